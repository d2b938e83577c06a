# storefront/initial_data.py
import asyncio
import logging
from contextlib import asynccontextmanager

from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import settings
from storefront.db.session_async import AsyncSessionLocal
from storefront.models.user import User
from storefront.services import user_service

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _advisory_lock(session: AsyncSession):
    """Serialize admin bootstrap across workers on PostgreSQL; no-op elsewhere."""
    dialect = session.bind.dialect.name if session.bind else "unknown"
    lock_key = 987654321
    got_lock = False
    try:
        if dialect == "postgresql":
            res = await session.execute(text("SELECT pg_try_advisory_lock(:k)"), {"k": lock_key})
            got_lock = bool(res.scalar())
            if not got_lock:
                logger.info("Another worker is bootstrapping the admin user; skipping.")
                yield False
                return
        yield True
    finally:
        if got_lock:
            await session.execute(text("SELECT pg_advisory_unlock(:k)"), {"k": lock_key})


async def create_initial_admin_user() -> User | None:
    """Create the first superuser from INITIAL_ADMIN_* settings. Idempotent."""
    if not settings.INITIAL_ADMIN_EMAIL or not settings.INITIAL_ADMIN_PASSWORD:
        logger.info("Skipping admin init: INITIAL_ADMIN_EMAIL or INITIAL_ADMIN_PASSWORD missing.")
        return None

    async with AsyncSessionLocal() as session:
        async with _advisory_lock(session) as proceed:
            if proceed is False:
                return None

            stmt = select(func.count()).select_from(User).where(User.is_superuser.is_(True))
            result = await session.execute(stmt)
            if (result.scalar() or 0) > 0:
                logger.info("A superuser already exists; none created.")
                return None

            existing = await user_service.get_by_email(session, str(settings.INITIAL_ADMIN_EMAIL))
            if existing:
                existing.is_superuser = True
                await session.commit()
                logger.warning(
                    "Initial user existed without admin rights; promoted.",
                    extra={"user_id": str(existing.id)},
                )
                return existing

            user = await user_service.create_user(
                session,
                email=str(settings.INITIAL_ADMIN_EMAIL),
                password=settings.INITIAL_ADMIN_PASSWORD,
                full_name="Initial Admin",
                is_superuser=True,
            )
            await session.commit()
            logger.info("Superuser created.", extra={"user_id": str(user.id)})
            return user


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    asyncio.run(create_initial_admin_user())
