#!/usr/bin/env python3

import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from kitabu.routes import api
from kitabu.configs import OPTIONS, LOG_LEVEL
from kitabu.core import db as database
from kitabu import __version__ as VERSION

logging.basicConfig(
    level=LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

database.init()

app = FastAPI(
    title="Kitabu API",
    description="Kitabu: circulation and fine engine for school libraries",
    version=VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api.router, prefix="/v1/api")

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("kitabu.app:app", **OPTIONS)
