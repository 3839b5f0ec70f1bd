# backend/services/grading_service.py
import re
from pydantic import BaseModel

MAX_EDIT_DISTANCE = 2
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

class ExpectedAnswer(BaseModel):
    artist: str
    title: str

class GradeResult(BaseModel):
    correct: bool
    artistCorrect: bool
    titleCorrect: bool
    expected: ExpectedAnswer

def normalize(text: str) -> str:
    # ASCII only: accented letters are treated as separators, not folded
    return _NON_ALNUM.sub(" ", text.strip().lower()).strip()

def levenshtein(a: str, b: str) -> int:
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ca != cb),
            ))
        previous = current
    return previous[-1]

def is_close(guess: str, expected: str, max_distance: int = MAX_EDIT_DISTANCE) -> bool:
    guess, expected = normalize(guess), normalize(expected)
    if not guess:
        return False
    return guess == expected or levenshtein(guess, expected) <= max_distance

def grade_answer(guess_artist: str, guess_title: str, artist: str, title: str) -> GradeResult:
    """Both artist and title must match on their own; there is no partial credit."""
    artist_ok = is_close(guess_artist, artist)
    title_ok = is_close(guess_title, title)
    return GradeResult(
        correct=artist_ok and title_ok, artistCorrect=artist_ok, titleCorrect=title_ok,
        expected=ExpectedAnswer(artist=artist, title=title),
    )
