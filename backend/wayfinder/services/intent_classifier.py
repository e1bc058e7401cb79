"""Classifies a user reply while destinations await confirmation.

The result is a closed set: Confirm | RefineByIndex | RefineByFilter | Question.
"""

import re
from dataclasses import dataclass

CONFIRM_PHRASES = (
    "looks good", "look good", "sounds good", "sounds great", "perfect", "confirm",
    "let's go", "lets go", "go ahead", "book it", "that works", "love it", "all of them",
    "that's it", "that is it",
)
CONFIRM_WORDS = {"yes", "yep", "yeah", "ok", "okay", "sure", "great"}
# Words that may accompany a bare confirmation ("yes please", "ok thanks")
CONFIRM_FILLER = {
    "that", "that's", "is", "it", "all", "please", "thanks", "thank", "you", "so", "much",
    "cheers", "then", "good", "fine", "very", "wonderful",
}

REFINE_WORDS = (
    "skip", "remove", "drop", "without", "instead", "replace", "swap", "exclude",
    "add", "more", "fewer", "less", "change", "different", "other than", "rather",
    "don't want", "dont want", "not interested", "no ",
)

QUESTION_STARTS = (
    "what", "how", "why", "when", "where", "which", "who", "can ", "could ", "would ",
    "should ", "is ", "are ", "do ", "does ", "tell me",
)

ORDINALS = {"first": 1, "second": 2, "third": 3, "fourth": 4, "fifth": 5, "sixth": 6}

# Filler allowed around destination numbers ("keep 1 and 3", "#2, #4 please")
_INDEX_FILLER = re.compile(
    r"\b(keep|just|only|choose|pick|select|go with|take|i'?ll|i want|want|options?|"
    r"destinations?|numbers?|and|the|ones?|please|let'?s|do)\b|[#,&.!]"
)


@dataclass(frozen=True)
class Confirm:
    pass


@dataclass(frozen=True)
class RefineByIndex:
    indices: tuple[int, ...]  # zero-based, in the order given


@dataclass(frozen=True)
class RefineByFilter:
    text: str


@dataclass(frozen=True)
class Question:
    text: str


Intent = Confirm | RefineByIndex | RefineByFilter | Question


def _indices(text: str, count: int) -> tuple[int, ...] | None:
    for word, number in ORDINALS.items():
        text = re.sub(rf"\b{word}\b", str(number), text)
    numbers = re.findall(r"\b\d{1,2}\b", text)
    if not numbers:
        return None
    leftover = _INDEX_FILLER.sub(" ", re.sub(r"\b\d{1,2}\b", " ", text)).strip()
    if leftover:
        return None
    picked: list[int] = []
    for n in numbers:
        value = int(n)
        if not 1 <= value <= count:
            return None
        if value - 1 not in picked:
            picked.append(value - 1)
    return tuple(picked)


def classify_intent(message: str, destination_count: int) -> Intent:
    text = " ".join(message.lower().split())
    is_question = text.endswith("?") or text.startswith(QUESTION_STARTS)
    wants_refine = any(w in f"{text} " for w in REFINE_WORDS)

    if not is_question and not wants_refine:
        words = set(re.findall(r"[a-z']+", text))
        bare_confirm = bool(words & CONFIRM_WORDS) and words <= CONFIRM_WORDS | CONFIRM_FILLER
        if bare_confirm or any(p in text for p in CONFIRM_PHRASES):
            return Confirm()

    if not is_question:
        indices = _indices(text, destination_count)
        if indices:
            return RefineByIndex(indices)

    if wants_refine:
        return RefineByFilter(message.strip())
    if is_question:
        return Question(message.strip())
    return RefineByFilter(message.strip())
