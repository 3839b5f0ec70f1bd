# backend/services/quiz_service.py
import random
from typing import List, Optional, Sequence, TypeVar
from pydantic import BaseModel
from services.spotify_service import SpotifyClient, SpotifyTrack
from services.preview_service import fill_missing_preview

MULTIPLE_CHOICE_QUESTIONS = 10
FREE_TEXT_QUESTIONS = 3
OPTIONS_PER_QUESTION = 4

T = TypeVar("T")

class InsufficientTracksError(Exception):
    def __init__(self, available: int, required: int):
        super().__init__("Not enough playable top tracks to generate a quiz.")
        self.available = available
        self.required = required

class QuizOption(BaseModel):
    id: str
    name: str
    artist: str

class QuizQuestion(BaseModel):
    preview_url: str
    correct_answer_id: str
    options: List[QuizOption]

class FreeTextQuestion(BaseModel):
    track_id: str
    preview_url: str

def shuffle(items: Sequence[T], rng: Optional[random.Random] = None) -> List[T]:
    """Uniform Fisher-Yates shuffle of a copy of ``items``."""
    shuffled = list(items)
    (rng or random).shuffle(shuffled)
    return shuffled

def playable_tracks(pool: Sequence[SpotifyTrack]) -> List[SpotifyTrack]:
    seen, playable = set(), []
    for track in pool:
        if track.preview_url and track.id not in seen:
            seen.add(track.id)
            playable.append(track)
    return playable

def _as_option(track: SpotifyTrack) -> QuizOption:
    return QuizOption(id=track.id, name=track.name, artist=track.artist_names)

def generate_multiple_choice_quiz(
    pool: Sequence[SpotifyTrack],
    question_count: int = MULTIPLE_CHOICE_QUESTIONS,
    rng: Optional[random.Random] = None,
) -> List[QuizQuestion]:
    rng = rng or random.Random()
    eligible = playable_tracks(pool)
    if len(eligible) < max(question_count, OPTIONS_PER_QUESTION):
        raise InsufficientTracksError(len(eligible), question_count)

    shuffled = shuffle(eligible, rng)
    questions = []
    for correct in shuffled[:question_count]:
        others = [t for t in shuffled if t.id != correct.id]
        distractors = rng.sample(others, OPTIONS_PER_QUESTION - 1)
        options = shuffle([correct, *distractors], rng)
        questions.append(QuizQuestion(
            preview_url=correct.preview_url,
            correct_answer_id=correct.id,
            options=[_as_option(t) for t in options],
        ))
    return questions

def generate_free_text_quiz(
    pool: Sequence[SpotifyTrack],
    question_count: int = FREE_TEXT_QUESTIONS,
    rng: Optional[random.Random] = None,
) -> List[FreeTextQuestion]:
    eligible = playable_tracks(pool)
    if len(eligible) < question_count:
        raise InsufficientTracksError(len(eligible), question_count)
    picked = shuffle(eligible, rng)[:question_count]
    return [FreeTextQuestion(track_id=t.id, preview_url=t.preview_url) for t in picked]

async def build_free_text_quiz(
    client: SpotifyClient,
    pool: Sequence[SpotifyTrack],
    question_count: int = FREE_TEXT_QUESTIONS,
    rng: Optional[random.Random] = None,
) -> List[FreeTextQuestion]:
    """Like generate_free_text_quiz, but looks up previews for tracks missing one when the pool runs short."""
    rng = rng or random.Random()
    playable = playable_tracks(pool)
    if len(playable) < question_count:
        playable_ids = {t.id for t in playable}
        for track in shuffle([t for t in pool if t.id not in playable_ids], rng):
            if track.id in playable_ids:
                continue
            filled = await fill_missing_preview(client, track)
            if filled:
                playable.append(filled)
                playable_ids.add(filled.id)
            if len(playable) >= question_count:
                break
    return generate_free_text_quiz(playable, question_count, rng)
