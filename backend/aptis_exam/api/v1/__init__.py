"""APTIS Exam Platform - API v1 Router."""
from fastapi import APIRouter

from aptis_exam.api.v1.attempts import router as attempts_router
from aptis_exam.api.v1.results import router as results_router
from aptis_exam.api.v1.reviews import router as reviews_router
from aptis_exam.api.v1.scoring import router as scoring_router

api_router = APIRouter()

api_router.include_router(attempts_router)
api_router.include_router(scoring_router)
api_router.include_router(reviews_router)
api_router.include_router(results_router)
