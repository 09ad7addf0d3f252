"""
CREDIT RAIL - Vercel Serverless API

Wraps the FastAPI application in a Mangum handler. Point DATABASE_URL at
PostgreSQL in serverless deployments; SQLite files do not survive between
invocations.
"""

import os
import sys

from mangum import Mangum

sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src"))

from api.server import app  # noqa: E402

handler = Mangum(app, lifespan="auto")
