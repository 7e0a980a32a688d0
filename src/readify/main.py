import logging
from fastapi import FastAPI
from readify.config import settings
from readify.db import build_engine, build_sessionmaker, init_db
from readify.api.router import router

def create_app(database_url: str | None = None) -> FastAPI:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    app = FastAPI(title=settings.APP_NAME)
    app.state.engine = build_engine(database_url)
    app.state.sessionmaker = build_sessionmaker(app.state.engine)
    app.include_router(router)

    @app.on_event("startup")
    async def on_startup():
        if settings.CREATE_TABLES:
            await init_db(app.state.engine)

    @app.on_event("shutdown")
    async def on_shutdown():
        await app.state.engine.dispose()

    return app

app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
