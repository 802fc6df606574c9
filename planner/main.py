import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi_users.password import PasswordHelper
from sqlalchemy import select

from . import background
from .database import init_db, async_session_maker
from .errors import AnalysisError, AuthError, NotFoundError, PersistenceError
from .models import User
from .routers import account, admin, messages, modules
from .schemas import UserCreate, UserRead, UserUpdate
from .services.messages import MessageBus
from .services.progress import EngineRegistry
from .services.scheduler import shutdown_scheduler, start_scheduler
from .settings.config import settings
from .users import auth_backend, bearer_backend, fastapi_users, on_logout

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Practice Strategy Planner")

# Enable CORS if needed
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Update for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# per-user questionnaire state and the chat invalidation bus live for the process
app.state.session_maker = async_session_maker
app.state.engines = EngineRegistry(async_session_maker, autosave_delay=settings.AUTOSAVE_DEBOUNCE_SECONDS)
app.state.message_bus = MessageBus()


@on_logout
def _discard_engine(user_id: int) -> None:
    # /auth/jwt/logout and /auth/bearer/logout; POST /logout discards through SessionStore
    app.state.engines.discard(user_id)

# ----------------------
# Route Includes
# ----------------------
app.include_router(modules.router)
app.include_router(account.router)
app.include_router(messages.router)
app.include_router(admin.router)

# Authentication Routes
app.include_router(
    fastapi_users.get_auth_router(auth_backend),
    prefix="/auth/jwt",
    tags=["auth"]
)
app.include_router(
    fastapi_users.get_auth_router(bearer_backend),
    prefix="/auth/bearer",
    tags=["auth"]
)
app.include_router(
    fastapi_users.get_register_router(UserRead, UserCreate),
    prefix="/auth",
    tags=["auth"]
)
app.include_router(
    fastapi_users.get_reset_password_router(),
    prefix="/auth",
    tags=["auth"]
)
app.include_router(
    fastapi_users.get_users_router(UserRead, UserUpdate),
    prefix="/users",
    tags=["users"]
)

# ----------------------
# Error taxonomy -> HTTP
# ----------------------
@app.exception_handler(NotFoundError)
async def _not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(AnalysisError)
async def _analysis_handler(request: Request, exc: AnalysisError):
    logger.warning("Analysis failed on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=502, content={"detail": str(exc)})


@app.exception_handler(PersistenceError)
async def _persistence_handler(request: Request, exc: PersistenceError):
    logger.error("Persistence failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.exception_handler(AuthError)
async def _auth_handler(request: Request, exc: AuthError):
    return JSONResponse(status_code=401, content={"detail": str(exc)})

# ----------------------
# Auto-create admin user
# ----------------------
async def create_admin_user():
    admin_email = settings.ADMIN_EMAIL
    admin_password = settings.ADMIN_PASSWORD

    if not admin_email or not admin_password:
        logger.warning("ADMIN_EMAIL or ADMIN_PASSWORD not set, skipping admin creation.")
        return

    async with async_session_maker() as session:
        result = await session.execute(select(User).where(User.email == admin_email))
        existing_admin = result.scalars().first()
        if not existing_admin:
            user = User(
                email=admin_email,
                hashed_password=PasswordHelper().hash(admin_password),
                is_superuser=True,
                is_approved=True,
                is_verified=True,
                is_active=True,
            )
            session.add(user)
            await session.commit()
            logger.info("Admin user created: %s", admin_email)
        else:
            logger.info("Admin user already exists: %s", admin_email)


@app.on_event("startup")
async def on_startup():
    await init_db()
    await create_admin_user()
    start_scheduler()


@app.on_event("shutdown")
async def on_shutdown():
    await background.shutdown()
    shutdown_scheduler()
