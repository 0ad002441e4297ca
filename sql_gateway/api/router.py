from fastapi import APIRouter
from sql_gateway.api.endpoints import encrypt, query

api_router = APIRouter()

# Combine all sub-routers into one
api_router.include_router(query.router)
api_router.include_router(encrypt.router)
