from sqlalchemy.ext.asyncio import AsyncSession


class BaseRepository:
    """Holds the session shared by every repository of one unit of work.

    Repositories add and flush but never commit; the calling service owns the
    transaction.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
