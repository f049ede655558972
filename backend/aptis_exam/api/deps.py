"""
APTIS Exam Platform - API Dependencies
FastAPI dependencies for authentication, authorization and service wiring
"""
import uuid
from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from aptis_exam.ai.core.llm import LLMClient
from aptis_exam.ai.grading.rubric_grader import RubricGrader
from aptis_exam.core.database import get_db
from aptis_exam.core.exceptions import ForbiddenError, UnauthorizedError
from aptis_exam.core.security import verify_token
from aptis_exam.models.user import User, UserRole
from aptis_exam.services.ai_scoring import ScoringService
from aptis_exam.services.attempt_lifecycle import AttemptService
from aptis_exam.services.manual_review import ReviewService
from aptis_exam.services.results import ResultService

# Security scheme; missing credentials are reported through UnauthorizedError
security = HTTPBearer(auto_error=False)

DbSession = Annotated[AsyncSession, Depends(get_db)]


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: DbSession,
) -> User:
    """
    Get current authenticated user from JWT token.

    Raises:
        UnauthorizedError: If token is missing, invalid or user not found
        ForbiddenError: If the account is deactivated
    """
    if credentials is None:
        raise UnauthorizedError("Not authenticated")

    subject = verify_token(credentials.credentials, token_type="access")
    if not subject:
        raise UnauthorizedError()

    try:
        user_id = uuid.UUID(subject)
    except ValueError as e:
        raise UnauthorizedError() from e

    user = await db.get(User, user_id)
    if not user:
        raise UnauthorizedError("User not found")
    if not user.is_active:
        raise ForbiddenError("Account is deactivated")

    return user


def require_role(*roles: UserRole):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.post("/ai/score-answer/{answer_id}")
        async def score(user: User = Depends(require_role(UserRole.TEACHER))):
            ...
    """
    allowed = {r.value for r in roles}

    async def role_checker(
        current_user: Annotated[User, Depends(get_current_user)],
    ) -> User:
        role = current_user.role.value if isinstance(current_user.role, UserRole) else current_user.role
        if role not in allowed:
            raise ForbiddenError(
                f"Insufficient permissions. Required: {sorted(allowed)}"
            )
        return current_user

    return role_checker


def get_llm_client(request: Request) -> LLMClient:
    """Process-wide LLM client created in the application lifespan."""
    return request.app.state.llm_client


def get_rubric_grader(
    llm: Annotated[LLMClient, Depends(get_llm_client)],
) -> RubricGrader:
    return RubricGrader(llm)


def get_attempt_service(db: DbSession) -> AttemptService:
    return AttemptService(db)


def get_scoring_service(
    db: DbSession,
    grader: Annotated[RubricGrader, Depends(get_rubric_grader)],
) -> ScoringService:
    return ScoringService(db, grader)


def get_review_service(db: DbSession) -> ReviewService:
    return ReviewService(db)


def get_result_service(db: DbSession) -> ResultService:
    return ResultService(db)


# Type aliases for common dependencies
CurrentUser = Annotated[User, Depends(get_current_user)]
Student = Annotated[User, Depends(require_role(UserRole.STUDENT))]
Grader = Annotated[User, Depends(require_role(UserRole.TEACHER, UserRole.ADMIN))]
Attempts = Annotated[AttemptService, Depends(get_attempt_service)]
Scoring = Annotated[ScoringService, Depends(get_scoring_service)]
Reviews = Annotated[ReviewService, Depends(get_review_service)]
Results = Annotated[ResultService, Depends(get_result_service)]
