import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from backend.core import config
from backend.core.logging_config import setup_logging
from backend.database import StoreManager
from backend.routes import (
    class_routes,
    competition_routes,
    course_routes,
    mentor_routes,
    mock_test_routes,
    notebook_routes,
    payment_routes,
    school_routes,
    topic_routes,
    user_routes,
)
from backend.routes.shared import DATABASE_UNAVAILABLE_MESSAGE

logger = logging.getLogger(__name__)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={'message': exc.detail},
        headers=getattr(exc, 'headers', None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={'message': 'Validation failed', 'details': jsonable_encoder(exc.errors())},
    )


async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception('Unhandled database error on %s %s', request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={'message': DATABASE_UNAVAILABLE_MESSAGE},
    )


def create_app(store: StoreManager | None = None) -> FastAPI:
    setup_logging()
    config.validate_runtime_config()

    app = FastAPI(title='E-Learning Marketplace API')
    app.state.store = store or StoreManager(config.DATABASE_URL, echo=config.SQL_ECHO)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=['*'],
        allow_headers=['*'],
    )

    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, database_exception_handler)

    @app.on_event('startup')
    def initialize_database() -> None:
        try:
            app.state.store.ensure_schema()
        except SQLAlchemyError:
            logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')

    @app.on_event('shutdown')
    def close_database() -> None:
        app.state.store.dispose()

    @app.get('/')
    def root():
        return {'status': 'E-Learning API Running'}

    app.include_router(user_routes.router, prefix='/users')
    app.include_router(mentor_routes.router, prefix='/mentors')
    app.include_router(school_routes.router, prefix='/schools')
    app.include_router(course_routes.router, prefix='/courses')
    app.include_router(class_routes.router, prefix='/classes')
    app.include_router(competition_routes.router, prefix='/competitions')
    app.include_router(topic_routes.router, prefix='/topics')
    app.include_router(mock_test_routes.router, prefix='/mock-tests')
    app.include_router(notebook_routes.router, prefix='/notebooks')
    app.include_router(payment_routes.router, prefix='/payments')

    return app


app = create_app()


if __name__ == '__main__':
    import uvicorn

    uvicorn.run('backend.main:app', host=config.API_HOST, port=config.API_PORT)
