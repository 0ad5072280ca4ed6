"""Rule-based query classification.

Pure and total: no I/O, never raises, same input always gives the same
Classification. Everything downstream (retrieval tuning, image strategy,
generation hints) keys off this result.
"""

import re

from app.core.schemas_retrieval import Classification, RetrievalOptions

# Category order doubles as the tie-break order
CATEGORIES: tuple[str, ...] = ("product", "recipe", "blog", "support", "commercial")

CONFIDENCE_CEILING = 5.0
STRONG_INDICATOR_BONUS = 2.0

_RULES: dict[str, tuple[float, tuple[str, ...]]] = {
    "product": (
        1.0,
        (
            r"\b(blender|vitamix|ascent|explorian|propel|professional|a2[35]00|a3[35]00|e3[12]0|750|container|blade|tamper|cup|pitcher)\b",
            r"\b(buy|price|cost|compare|vs|versus|best|which|review|model|series)\b",
            r"\b(warranty|features?|specs?|specifications?|motor|watt|hp|horsepower)\b",
            r"\b(gift|holiday|sale|deal|discount|bundle)\b",
        ),
    ),
    "recipe": (
        1.0,
        (
            r"\b(recipe|smoothie|soup|sauce|dip|spread|butter|milk|juice|puree|blend)\b",
            r"\b(make|cook|prepare|ingredient|cup|tbsp|tsp|oz|ounce)\b",
            r"\b(healthy|vegan|vegetarian|gluten.?free|dairy.?free|keto|paleo)\b",
            r"\b(breakfast|lunch|dinner|snack|dessert|appetizer)\b",
            r"\b(almond|cashew|oat|banana|berry|mango|spinach|kale|avocado)\b",
        ),
    ),
    "blog": (
        0.8,
        (
            r"\b(tips?|ideas?|ways?|how to|guide|article|learn|benefits?)\b",
            r"\b(nutrition|health|wellness|lifestyle|kitchen|cooking)\b",
            r"\b(meal prep|food waste|composting|sustainability)\b",
        ),
    ),
    "support": (
        0.9,
        (
            r"\b(help|support|troubleshoot|fix|problem|issue|error|broken)\b",
            r"\b(manual|instructions?|how do i|warranty|repair|service|return)\b",
            r"\b(clean|cleaning|maintenance|care|store|storage)\b",
            r"\b(register|registration|serial|contact)\b",
        ),
    ),
    "commercial": (
        0.9,
        (
            r"\b(commercial|restaurant|business|foodservice|cafe|bar|hotel)\b",
            r"\b(quiet one|drink machine|vita.?prep|blending station)\b",
            r"\b(nsf|certified|volume|industrial)\b",
        ),
    ),
}

_COMPILED: dict[str, tuple[float, tuple[re.Pattern, ...]]] = {
    category: (weight, tuple(re.compile(p, re.IGNORECASE | re.ASCII) for p in patterns))
    for category, (weight, patterns) in _RULES.items()
}

STRONG_INDICATORS: dict[str, tuple[str, ...]] = {
    "product": (
        "vitamix",
        "ascent",
        "explorian",
        "propel",
        "a2300",
        "a2500",
        "a3300",
        "a3500",
        "e310",
        "e320",
        "750",
    ),
    "recipe": ("recipe", "smoothie", "soup", "sauce", "ingredients"),
    "support": ("warranty", "repair", "troubleshoot", "manual"),
    "commercial": ("commercial", "restaurant", "quiet one"),
}

STOP_WORDS = frozenset(
    """
    a an the is are was were be been being have has had do does did will would could
    should may might must shall can need dare ought used to of in for on with at by
    from as into through during before after above below between under again further
    then once here there when where why how all each few more most other some such no
    nor not only own same so than too very just and but if or because until while
    although though what which who whom this that these those am i me my myself we
    our ours ourselves you your yours yourself yourselves he him his himself she her
    hers herself it its itself they them their theirs themselves best good great make get
    """.split()
)

_NON_WORD = re.compile(r"[^\w\s]", re.ASCII)

# (limit, threshold, preferred types) per category
_RETRIEVAL_TUNING: dict[str, tuple[int, float, tuple[str, ...]]] = {
    "product": (8, 0.6, ("product", "shop")),
    "recipe": (6, 0.65, ("recipe",)),
    "blog": (5, 0.65, ("blog", "page")),
    "support": (5, 0.6, ("support", "page")),
    "commercial": (6, 0.65, ("commercial", "product")),
    "general": (6, 0.65, ()),
}


def score_query(query: str) -> dict[str, float]:
    """Raw weighted score per category."""
    lowered = query.lower()
    scores: dict[str, float] = {}
    for category in CATEGORIES:
        weight, patterns = _COMPILED[category]
        score = sum(weight for pattern in patterns if pattern.search(query))
        for term in STRONG_INDICATORS.get(category, ()):
            if term in lowered:
                score += STRONG_INDICATOR_BONUS
        scores[category] = round(score, 6)
    return scores


def extract_keywords(query: str) -> list[str]:
    """Lowercased content words, stop-words and short tokens removed, first-seen order."""
    words = _NON_WORD.sub(" ", query.lower()).split()
    seen: dict[str, None] = {}
    for word in words:
        if len(word) > 2 and word not in STOP_WORDS:
            seen.setdefault(word, None)
    return list(seen)


def classify_query(query: str) -> Classification:
    """
    Classify a query into a content category.

    Args:
        query: Raw query text (non-strings are coerced)

    Returns:
        Classification with confidence in [0, 1]
    """
    text = "" if query is None else str(query)
    scores = score_query(text)

    best_type = "general"
    best_score = 0.0
    for category in CATEGORIES:
        if scores[category] > best_score:
            best_type = category
            best_score = scores[category]

    return Classification(
        type=best_type,
        confidence=min(best_score / CONFIDENCE_CEILING, 1.0),
        keywords=tuple(extract_keywords(text)),
        needs_product_images=(
            best_type in ("product", "commercial")
            or (best_type == "general" and scores["product"] > 0)
        ),
        needs_recipe_images=(
            best_type == "recipe" or (best_type == "blog" and scores["recipe"] > 0)
        ),
        scores=scores,
    )


def get_retrieval_options(classification: Classification, skip_cache: bool = False) -> RetrievalOptions:
    """Search limit, threshold and preferred source types for a classification."""
    limit, threshold, preferred = _RETRIEVAL_TUNING.get(
        classification.type, _RETRIEVAL_TUNING["general"]
    )
    return RetrievalOptions(
        threshold=threshold,
        limit=limit,
        preferred_types=preferred,
        skip_cache=skip_cache,
    )
