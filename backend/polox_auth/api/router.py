"""Polo X API Router - aggregates the /api routes."""

from fastapi import APIRouter

from polox_auth.api import admin

# Main API router - all routes will be prefixed with /api
api_router = APIRouter(prefix="/api")

api_router.include_router(admin.router)
