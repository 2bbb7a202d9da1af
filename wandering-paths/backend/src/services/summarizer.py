from __future__ import annotations

import re
from typing import List

from loguru import logger

from config import Configuration
from models import PlaceReview, ReviewSummary, normalize_dishes
from services.llm import complete
from utils import extract_json_object

SENTIMENTS = ("positive", "mixed", "negative")
CONFIDENCES = ("high", "medium", "low")

DISH_KWS = [
    "ramen", "sushi", "udon", "tempura", "katsu", "gyoza",
    "pho", "banh mi", "dumplings", "bao",
    "curry", "biryani", "naan", "dal",
    "brisket", "steak", "burger", "fries",
    "pizza", "pasta", "risotto", "tiramisu",
    "tacos", "burrito", "churros",
    "fish and chips", "sunday roast", "croissant",
]

SYSTEM_PROMPT = (
    "You summarize restaurant reviews. Respond with a single JSON object with the keys "
    "summary, popularDishes, sentiment and confidence. Only output JSON."
)


def _extract_keywords(text: str, kws: List[str]) -> List[str]:
    out: List[str] = []
    low = text.lower()
    for k in kws:
        if re.search(r"\b" + re.escape(k) + r"\b", low):
            out.append(k)
    return list(dict.fromkeys(out))


def _sentiment_for(reviews: List[PlaceReview]) -> str:
    if not reviews:
        return "mixed"
    avg = sum(r.rating for r in reviews) / len(reviews)
    if avg >= 4.0:
        return "positive"
    if avg <= 2.5:
        return "negative"
    return "mixed"


def _confidence_for(reviews: List[PlaceReview]) -> str:
    if len(reviews) >= 10:
        return "high"
    if len(reviews) >= 5:
        return "medium"
    return "low"


def build_prompt(reviews: List[PlaceReview], restaurant_name: str, max_dishes: int) -> str:
    review_texts = "\n\n".join(f"\"{r.text}\" ({r.rating:g}/5 stars)" for r in reviews)
    return (
        f"Analyze these Google Maps reviews for {restaurant_name} and create a balanced summary.\n\n"
        f"REVIEWS:\n{review_texts}\n\n"
        "Return JSON:\n"
        "{\n"
        '  "summary": "2-3 sentence balanced summary highlighting key strengths and any notable concerns",\n'
        '  "popularDishes": ["dish1", "dish2", "dish3"],\n'
        '  "sentiment": "positive|mixed|negative",\n'
        '  "confidence": "high|medium|low"\n'
        "}\n\n"
        "GUIDELINES:\n"
        "- Include both strengths and weaknesses if mentioned\n"
        f"- Popular dishes must be specific menu items; at most {max_dishes}\n"
        "- Sentiment: positive (mostly 4-5 stars), mixed (varied), negative (mostly 1-3 stars)\n"
        "- Confidence: high (10+ reviews, clear patterns), medium (5-9 reviews), low (<5 reviews or unclear)\n"
    )


def summarize_without_llm(reviews: List[PlaceReview], restaurant_name: str, max_dishes: int = 3) -> ReviewSummary:
    """Rule-based summary used when no LLM provider is configured."""
    text = " ".join(r.text for r in reviews)
    dishes = _extract_keywords(text, DISH_KWS)[:max_dishes]
    avg = sum(r.rating for r in reviews) / len(reviews) if reviews else 0.0
    summary = f"Recent reviewers rate {restaurant_name} {avg:.1f}/5 on average."
    if dishes:
        summary += f" Frequently mentioned: {', '.join(dishes)}."
    return ReviewSummary(
        summary=summary,
        popular_dishes=dishes,
        sentiment=_sentiment_for(reviews),
        confidence=_confidence_for(reviews),
    )


def summarize_reviews(
    cfg: Configuration,
    reviews: List[PlaceReview],
    restaurant_name: str,
) -> ReviewSummary:
    if not cfg.llm_enabled():
        return summarize_without_llm(reviews, restaurant_name, cfg.max_dishes)

    try:
        raw = complete(cfg, SYSTEM_PROMPT, build_prompt(reviews, restaurant_name, cfg.max_dishes), name="ReviewSummarizer")
    except Exception as exc:
        logger.warning("review summary generation failed for {}: {}", restaurant_name, exc)
        return ReviewSummary(summary="Unable to analyze reviews at this time")

    data = extract_json_object(raw)
    if data is None:
        logger.warning("no JSON object in summary response for {}", restaurant_name)
        return ReviewSummary(summary="Unable to analyze reviews at this time")

    dishes = data.get("popularDishes") or data.get("popular_dishes") or []
    if not isinstance(dishes, list):
        dishes = []
    sentiment = str(data.get("sentiment") or "mixed").lower()
    confidence = str(data.get("confidence") or "low").lower()
    return ReviewSummary(
        summary=str(data.get("summary") or "Unable to generate summary").strip(),
        popular_dishes=normalize_dishes([str(d) for d in dishes], limit=cfg.max_dishes),
        sentiment=sentiment if sentiment in SENTIMENTS else "mixed",
        confidence=confidence if confidence in CONFIDENCES else "low",
    )
