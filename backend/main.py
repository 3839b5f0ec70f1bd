# backend/main.py
import os, random
import httpx
from typing import List, Literal, Optional
from contextlib import asynccontextmanager
from dotenv import load_dotenv
from fastapi import FastAPI, Depends, Request, HTTPException, Query
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware
from starlette.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, model_validator

from database import create_db_and_tables, dispose_engine, get_session
from models import User, UserPublic, TrackOutcome
from auth import oauth, create_access_token, find_or_create_user, get_current_user
from services import spotify_service, preview_service, quiz_service, grading_service, results_service
from services.spotify_service import SpotifyAPIError, SpotifyClient
from services.quiz_service import InsufficientTracksError

load_dotenv()
CLIENT_URL = os.getenv("CLIENT_URL")
SESSION_SECRET_KEY = os.getenv("JWT_SECRET")
if not CLIENT_URL or not SESSION_SECRET_KEY:
    raise ValueError("CLIENT_URL and JWT_SECRET must be set in .env file!")

TimeRange = Literal["short_term", "medium_term", "long_term"]

@asynccontextmanager
async def lifespan(app: FastAPI):
    print("INFO:     Starting up and creating database tables...")
    await create_db_and_tables()
    print("INFO:     Startup complete.")
    yield
    await dispose_engine()

app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware, allow_origins=[CLIENT_URL], allow_credentials=True,
    allow_methods=["*"], allow_headers=["*"],
)
app.add_middleware(SessionMiddleware, secret_key=SESSION_SECRET_KEY)

# --- Error responses: always {"error": "..."} ---
@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code, headers=getattr(exc, "headers", None))

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query"))
    message = first.get("msg", "Invalid request")
    return JSONResponse({"error": f"{field}: {message}" if field else message}, status_code=400)

@app.exception_handler(InsufficientTracksError)
async def insufficient_tracks_handler(request: Request, exc: InsufficientTracksError):
    return JSONResponse({"error": str(exc)}, status_code=400)

@app.exception_handler(SpotifyAPIError)
async def spotify_error_handler(request: Request, exc: SpotifyAPIError):
    print(f"ERROR in {request.url.path}: {exc.message} (upstream status {exc.upstream_status})")
    return JSONResponse({"error": exc.message}, status_code=500)

@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    print(f"ERROR in {request.url.path}: {exc!r}")
    return JSONResponse({"error": "An unknown error occurred"}, status_code=500)

# --- Pydantic Models ---
class PreviewCheckRequest(BaseModel): song: str = Field(min_length=1); artist: Optional[str] = None
class GradeRequest(BaseModel): trackId: str = Field(pattern=r"^[A-Za-z0-9]+$"); artist: str; title: str

class SaveResultRequest(BaseModel):
    score: int = Field(ge=0)
    totalQuestions: int = Field(gt=0)
    timeRange: Optional[TimeRange] = None
    tracks: Optional[List[TrackOutcome]] = None

    @model_validator(mode="after")
    def score_within_total(self):
        if self.score > self.totalQuestions:
            raise ValueError("score cannot exceed totalQuestions")
        return self

# --- Dependencies ---
async def get_http_client():
    async with httpx.AsyncClient() as client:
        yield client

async def get_spotify_client(
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    http_client: httpx.AsyncClient = Depends(get_http_client),
) -> SpotifyClient:
    user = await spotify_service.refresh_access_token_if_needed(session, current_user, http_client)
    return SpotifyClient(user.oauth_access_token, http_client)

def get_rng() -> random.Random:
    return random.Random()

# --- API Routes ---
@app.get("/auth/spotify")
async def login(request: Request):
    assert oauth.spotify is not None
    redirect_uri = request.url_for('auth_callback')
    return await oauth.spotify.authorize_redirect(request, redirect_uri)

@app.get("/auth/spotify/callback", name="auth_callback")
async def auth_callback(request: Request, session: AsyncSession = Depends(get_session)):
    try:
        assert oauth.spotify is not None
        token = await oauth.spotify.authorize_access_token(request)
        resp = await oauth.spotify.get('me', token=token)
        resp.raise_for_status()
        db_user = await find_or_create_user(session, resp.json(), token)
        access_token = create_access_token(data={"sub": str(db_user.id)})
        return RedirectResponse(url=f"{CLIENT_URL}/dashboard?token={access_token}")
    except Exception as e:
        print(f"ERROR during auth callback: {e}")
        return RedirectResponse(url=f"{CLIENT_URL}/login/error")

@app.get("/api/me", response_model=UserPublic)
async def get_profile(current_user: User = Depends(get_current_user)):
    return current_user

@app.get("/api/spotify/top-items")
async def get_top_items(time_range: TimeRange = "medium_term", client: SpotifyClient = Depends(get_spotify_client)):
    return await spotify_service.fetch_top_items(client, time_range)

@app.post("/api/preview-check")
async def preview_check(request: PreviewCheckRequest, client: SpotifyClient = Depends(get_spotify_client)):
    found = await preview_service.find_preview(client, request.song, request.artist)
    if not found:
        raise HTTPException(status_code=404, detail="No preview found for this song/artist.")
    return found

@app.get("/api/quiz", response_model=List[quiz_service.QuizQuestion])
async def get_quiz(
    time_range: Optional[TimeRange] = None,
    client: SpotifyClient = Depends(get_spotify_client),
    rng: random.Random = Depends(get_rng),
):
    time_ranges = [time_range] if time_range else spotify_service.TIME_RANGES
    pool = await spotify_service.fetch_quiz_pool(client, time_ranges)
    return quiz_service.generate_multiple_choice_quiz(pool, rng=rng)

@app.get("/api/quiz/free-text", response_model=List[quiz_service.FreeTextQuestion])
async def get_free_text_quiz(
    time_range: TimeRange = "medium_term",
    client: SpotifyClient = Depends(get_spotify_client),
    rng: random.Random = Depends(get_rng),
):
    pool = await spotify_service.fetch_quiz_pool(client, [time_range])
    return await quiz_service.build_free_text_quiz(client, pool, rng=rng)

@app.post("/api/quiz/grade", response_model=grading_service.GradeResult)
async def grade_free_text_answer(request: GradeRequest, client: SpotifyClient = Depends(get_spotify_client)):
    try:
        track = await client.get_track(request.trackId)
    except SpotifyAPIError as e:
        if e.upstream_status in (400, 404):
            raise HTTPException(status_code=404, detail="Track not found")
        raise
    return grading_service.grade_answer(request.artist, request.title, track.artist_names, track.name)

@app.post("/api/quiz/save-result")
async def save_result(
    request: SaveResultRequest,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    result = await results_service.save_quiz_result(
        session, current_user, request.score, request.totalQuestions,
        time_range=request.timeRange, tracks=request.tracks,
    )
    return {
        "message": "Quiz result saved successfully",
        "result": {
            "id": result.id, "score": result.score, "totalQuestions": result.totalQuestions,
            "percentage": result.percentage, "date": result.date,
        },
    }

@app.get("/api/quiz/results")
async def get_results(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    return await results_service.get_results_page(session, current_user.id, page, limit)

@app.get("/api/statistics")
async def get_statistics(current_user: User = Depends(get_current_user), session: AsyncSession = Depends(get_session)):
    return await results_service.get_statistics_summary(session, current_user.id)

@app.get("/")
async def read_root():
    return {"message": "tunequiz backend is running!"}
