# backend/services/results_service.py
import math
from typing import List, Optional, Sequence
from sqlalchemy import func
from sqlmodel import select
from sqlalchemy.ext.asyncio import AsyncSession
from models import User, QuizResult, QuizResultSummary, TrackOutcome

DEFAULT_TIME_RANGE = "medium_term"
EMPTY_STATS = {"totalQuizzes": 0, "averageScore": 0, "bestScore": 0, "totalCorrect": 0, "totalQuestions": 0}
GRADE_THRESHOLDS = ((90, "A+"), (80, "A"), (70, "B"), (60, "C"), (50, "D"))

def compute_percentage(score: int, total: int) -> int:
    """round(score / total * 100) with halves rounded up, in integer arithmetic."""
    if total <= 0:
        raise ValueError("totalQuestions must be positive")
    return (score * 200 + total) // (2 * total)

def letter_grade(percentage: float) -> str:
    for threshold, grade in GRADE_THRESHOLDS:
        if percentage >= threshold:
            return grade
    return "F"

async def save_quiz_result(
    session: AsyncSession,
    user: User,
    score: int,
    total_questions: int,
    time_range: Optional[str] = None,
    tracks: Optional[Sequence[TrackOutcome]] = None,
) -> QuizResult:
    result = QuizResult(
        userId=user.id,
        userEmail=user.email,
        userName=user.displayName or user.email,
        score=score,
        totalQuestions=total_questions,
        percentage=compute_percentage(score, total_questions),
        timeRange=time_range or DEFAULT_TIME_RANGE,
        tracks=[t.model_dump() for t in tracks or []],
    )
    session.add(result)
    await session.commit()
    await session.refresh(result)
    print(f"INFO:     Quiz result saved for user {user.email}: {score}/{total_questions} ({result.percentage}%)")
    return result

async def list_quiz_results(session: AsyncSession, user_id: int, page: int = 1, limit: int = 10) -> List[QuizResultSummary]:
    statement = (
        select(QuizResult)
        .where(QuizResult.userId == user_id)
        .order_by(QuizResult.date.desc(), QuizResult.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    rows = (await session.execute(statement)).scalars().all()
    summaries = []
    for row in rows:
        summary = QuizResultSummary.model_validate(row)
        summary.grade = letter_grade(summary.percentage)
        summaries.append(summary)
    return summaries

async def count_quiz_results(session: AsyncSession, user_id: int) -> int:
    statement = select(func.count()).select_from(QuizResult).where(QuizResult.userId == user_id)
    return (await session.execute(statement)).scalar_one()

async def get_user_stats(session: AsyncSession, user_id: int) -> dict:
    statement = select(
        func.count(QuizResult.id),
        func.avg(QuizResult.percentage),
        func.max(QuizResult.percentage),
        func.sum(QuizResult.score),
        func.sum(QuizResult.totalQuestions),
    ).where(QuizResult.userId == user_id)
    total, average, best, correct, questions = (await session.execute(statement)).one()
    if not total:
        return dict(EMPTY_STATS)
    return {
        "totalQuizzes": total,
        "averageScore": float(average),
        "bestScore": best,
        "totalCorrect": correct,
        "totalQuestions": questions,
    }

async def get_results_page(session: AsyncSession, user_id: int, page: int = 1, limit: int = 10) -> dict:
    results = await list_quiz_results(session, user_id, page, limit)
    total = await count_quiz_results(session, user_id)
    stats = await get_user_stats(session, user_id)
    return {
        "results": results,
        "pagination": {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit)},
        "stats": stats,
    }

async def get_statistics_summary(session: AsyncSession, user_id: int) -> dict:
    stats = await get_user_stats(session, user_id)
    accuracy = compute_percentage(stats["totalCorrect"], stats["totalQuestions"]) if stats["totalQuestions"] else 0
    return {
        **stats,
        "overallAccuracy": accuracy,
        "averageGrade": letter_grade(stats["averageScore"]),
        "bestGrade": letter_grade(stats["bestScore"]),
    }
