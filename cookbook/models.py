"""Domain models used by the recipe retrieval and synthesis services."""
from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Optional


CONTENT_FIELDS = (
    "title",
    "description",
    "servings",
    "prep_time",
    "cook_time",
    "total_time",
    "ingredients",
    "directions",
    "notes",
)


def _as_list(value: object) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [str(item) for item in value]


def _unique(values: List[str]) -> List[str]:
    seen = set()
    result: List[str] = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


@dataclass
class RelevancyResult:
    """LLM assigned relevance of a recipe for a single query."""

    query: str
    score: int = 0

    def as_record(self) -> Dict[str, object]:
        return {"query": self.query, "score": self.score}

    @classmethod
    def from_record(cls, payload: Dict[str, Any]) -> "RelevancyResult":
        return cls(query=str(payload.get("query") or ""), score=int(payload.get("score") or 0))


@dataclass
class ScrapedRecipe:
    """Raw recipe content extracted from a web page."""

    id: Optional[str] = None
    recipe_url: Optional[str] = None
    image_url: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    servings: Optional[str] = None
    prep_time: Optional[str] = None
    cook_time: Optional[str] = None
    total_time: Optional[str] = None
    notes: Optional[str] = None
    ingredients: List[str] = field(default_factory=list)
    directions: List[str] = field(default_factory=list)

    def as_record(self) -> Dict[str, object]:
        return {item.name: getattr(self, item.name) for item in fields(self)}


@dataclass
class Recipe:
    """Normalized recipe entity as indexed and persisted."""

    id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    servings: Optional[str] = None
    prep_time: Optional[str] = None
    cook_time: Optional[str] = None
    total_time: Optional[str] = None
    ingredients: List[str] = field(default_factory=list)
    directions: List[str] = field(default_factory=list)
    notes: Optional[str] = None
    cleaned: bool = False
    recipe_url: Optional[str] = None
    image_url: Optional[str] = None
    aliases: List[str] = field(default_factory=list)
    index_title: Optional[str] = None
    relevancy: Dict[str, RelevancyResult] = field(default_factory=dict)

    def relevancy_score(self, query: str) -> Optional[int]:
        """Return the cached score for ``query`` or ``None`` when unranked."""

        result = self.relevancy.get(query)
        return result.score if result is not None else None

    def is_relevant(self, query: str, acceptable_score: int) -> bool:
        score = self.relevancy_score(query)
        return score is not None and score >= acceptable_score

    def set_aliases(self, aliases: List[str]) -> None:
        self.aliases = _unique([alias.strip() for alias in aliases if alias and alias.strip()])

    def apply_cleaned(self, cleaned: "CleanedRecipe") -> None:
        """Copy every populated field of ``cleaned`` onto this recipe."""

        for name in CONTENT_FIELDS:
            value = getattr(cleaned, name)
            if value is not None:
                setattr(self, name, value)
        self.cleaned = True

    def snapshot(self) -> "Recipe":
        """Copy with its own lists and relevancy map."""

        return replace(
            self,
            ingredients=list(self.ingredients),
            directions=list(self.directions),
            aliases=list(self.aliases),
            relevancy={
                query: RelevancyResult(query=result.query, score=result.score)
                for query, result in list(self.relevancy.items())
            },
        )

    def copy_content_from(self, other: "Recipe") -> None:
        for name in CONTENT_FIELDS:
            setattr(self, name, getattr(other, name))

    def as_record(self) -> Dict[str, object]:
        """Convert the recipe into a serializable dict for persistence."""

        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "servings": self.servings,
            "prep_time": self.prep_time,
            "cook_time": self.cook_time,
            "total_time": self.total_time,
            "ingredients": self.ingredients,
            "directions": self.directions,
            "notes": self.notes,
            "cleaned": self.cleaned,
            "recipe_url": self.recipe_url,
            "image_url": self.image_url,
            "aliases": self.aliases,
            "index_title": self.index_title,
            "relevancy": {
                query: result.as_record() for query, result in self.relevancy.items()
            },
        }

    @classmethod
    def from_record(cls, payload: Dict[str, Any]) -> "Recipe":
        """Recreate a recipe entity from a persisted representation."""

        relevancy_raw = payload.get("relevancy") or {}
        relevancy: Dict[str, RelevancyResult] = {}
        for query, result in relevancy_raw.items():
            entry = RelevancyResult.from_record(result or {})
            if not entry.query:
                entry.query = query
            relevancy[query] = entry

        return cls(
            id=payload.get("id"),
            title=payload.get("title"),
            description=payload.get("description"),
            servings=payload.get("servings"),
            prep_time=payload.get("prep_time"),
            cook_time=payload.get("cook_time"),
            total_time=payload.get("total_time"),
            ingredients=_as_list(payload.get("ingredients")),
            directions=_as_list(payload.get("directions")),
            notes=payload.get("notes"),
            cleaned=bool(payload.get("cleaned", False)),
            recipe_url=payload.get("recipe_url"),
            image_url=payload.get("image_url"),
            aliases=_unique(_as_list(payload.get("aliases"))),
            index_title=payload.get("index_title"),
            relevancy=relevancy,
        )

    @classmethod
    def from_scraped(cls, scraped: ScrapedRecipe) -> "Recipe":
        return cls(
            id=scraped.id,
            title=scraped.title,
            description=scraped.description,
            servings=scraped.servings,
            prep_time=scraped.prep_time,
            cook_time=scraped.cook_time,
            total_time=scraped.total_time,
            ingredients=list(scraped.ingredients),
            directions=list(scraped.directions),
            notes=scraped.notes,
            recipe_url=scraped.recipe_url,
            image_url=scraped.image_url,
        )

    def as_source_record(self) -> Dict[str, object]:
        """Content-only view handed to prompts."""

        record = {name: getattr(self, name) for name in CONTENT_FIELDS}
        record["recipe_url"] = self.recipe_url
        return record


@dataclass
class CleanedRecipe:
    """Normalized recipe content returned by the cleaning prompt."""

    title: Optional[str] = None
    description: Optional[str] = None
    servings: Optional[str] = None
    prep_time: Optional[str] = None
    cook_time: Optional[str] = None
    total_time: Optional[str] = None
    ingredients: Optional[List[str]] = None
    directions: Optional[List[str]] = None
    notes: Optional[str] = None

    @classmethod
    def from_record(cls, payload: Dict[str, Any]) -> "CleanedRecipe":
        return cls(
            title=payload.get("title"),
            description=payload.get("description"),
            servings=payload.get("servings"),
            prep_time=payload.get("prep_time"),
            cook_time=payload.get("cook_time"),
            total_time=payload.get("total_time"),
            ingredients=_as_list(payload["ingredients"]) if payload.get("ingredients") else None,
            directions=_as_list(payload["directions"]) if payload.get("directions") else None,
            notes=payload.get("notes"),
        )


@dataclass
class RenamerResult:
    index_title: str
    aliases: List[str] = field(default_factory=list)

    @classmethod
    def from_record(cls, payload: Dict[str, Any]) -> "RenamerResult":
        return cls(
            index_title=str(payload.get("index_title") or "").strip(),
            aliases=_as_list(payload.get("aliases")),
        )


@dataclass
class SearchResult:
    selected_indices: List[int] = field(default_factory=list)

    @classmethod
    def from_record(cls, payload: Dict[str, Any]) -> "SearchResult":
        indices: List[int] = []
        for value in payload.get("selected_indices") or []:
            try:
                indices.append(int(value))
            except (TypeError, ValueError):
                continue
        return cls(selected_indices=indices)


@dataclass
class AlternativeQueryResult:
    new_query: str

    @classmethod
    def from_record(cls, payload: Dict[str, Any]) -> "AlternativeQueryResult":
        return cls(new_query=str(payload.get("new_query") or ""))


@dataclass
class RecipeAnalysis:
    """Critique of a synthesized recipe."""

    quality_score: int = 0
    analysis: Optional[str] = None
    suggestions: Optional[str] = None

    def as_record(self) -> Dict[str, object]:
        return {
            "quality_score": self.quality_score,
            "analysis": self.analysis,
            "suggestions": self.suggestions,
        }

    @classmethod
    def from_record(cls, payload: Dict[str, Any]) -> "RecipeAnalysis":
        return cls(
            quality_score=int(payload.get("quality_score") or 0),
            analysis=payload.get("analysis"),
            suggestions=payload.get("suggestions"),
        )


@dataclass
class SynthesizedRecipe:
    """Candidate recipe produced by the drafting agent."""

    title: Optional[str] = None
    description: Optional[str] = None
    servings: Optional[str] = None
    prep_time: Optional[str] = None
    cook_time: Optional[str] = None
    total_time: Optional[str] = None
    ingredients: List[str] = field(default_factory=list)
    directions: List[str] = field(default_factory=list)
    notes: Optional[str] = None
    inspired_by: List[str] = field(default_factory=list)
    image_urls: List[str] = field(default_factory=list)
    quality_score: Optional[int] = None
    analysis: Optional[str] = None
    suggestions: Optional[str] = None
    attempt_count: int = 0
    revisions: List["SynthesizedRecipe"] = field(default_factory=list)

    @property
    def is_analyzed(self) -> bool:
        return self.quality_score is not None and bool(self.analysis) and bool(self.suggestions)

    def add_analysis_result(self, analysis: RecipeAnalysis) -> None:
        self.quality_score = analysis.quality_score
        self.analysis = analysis.analysis
        self.suggestions = analysis.suggestions

    def snapshot(self) -> "SynthesizedRecipe":
        """Copy of this draft without its revision history."""

        return SynthesizedRecipe(
            title=self.title,
            description=self.description,
            servings=self.servings,
            prep_time=self.prep_time,
            cook_time=self.cook_time,
            total_time=self.total_time,
            ingredients=list(self.ingredients),
            directions=list(self.directions),
            notes=self.notes,
            inspired_by=list(self.inspired_by),
            image_urls=list(self.image_urls),
            quality_score=self.quality_score,
            analysis=self.analysis,
            suggestions=self.suggestions,
            attempt_count=self.attempt_count,
        )

    def as_record(self) -> Dict[str, object]:
        return {
            "title": self.title,
            "description": self.description,
            "servings": self.servings,
            "prep_time": self.prep_time,
            "cook_time": self.cook_time,
            "total_time": self.total_time,
            "ingredients": self.ingredients,
            "directions": self.directions,
            "notes": self.notes,
            "inspired_by": self.inspired_by,
            "quality_score": self.quality_score,
            "analysis": self.analysis,
            "suggestions": self.suggestions,
            "attempt_count": self.attempt_count,
        }

    @classmethod
    def from_record(cls, payload: Dict[str, Any]) -> "SynthesizedRecipe":
        return cls(
            title=payload.get("title"),
            description=payload.get("description"),
            servings=payload.get("servings"),
            prep_time=payload.get("prep_time"),
            cook_time=payload.get("cook_time"),
            total_time=payload.get("total_time"),
            ingredients=_as_list(payload.get("ingredients")),
            directions=_as_list(payload.get("directions")),
            notes=payload.get("notes"),
            inspired_by=_as_list(payload.get("inspired_by")),
        )

    def to_markdown(self) -> str:
        lines: List[str] = [f"# {self.title or 'Untitled Recipe'}", ""]
        for label, value in (
            ("Servings", self.servings),
            ("Cook Time", self.cook_time),
            ("Prep Time", self.prep_time),
            ("Total Time", self.total_time),
        ):
            if value:
                lines.append(f"**{label}:** {value}  ")
        lines.append("")
        if self.description:
            lines.extend([self.description, ""])
        lines.extend(["---", "", "## Ingredients"])
        lines.extend(f"- {item}" for item in self.ingredients)
        lines.extend(["", "## Directions"])
        lines.extend(f"{index}. {step}" for index, step in enumerate(self.directions, start=1))
        if self.notes:
            lines.extend(["", "## Notes", self.notes])
        if self.inspired_by:
            lines.extend(["", "## Inspired By"])
            lines.extend(f"- {url}" for url in self.inspired_by)
        return "\n".join(lines).strip()


@dataclass(frozen=True)
class SiteSelectors:
    """Raw selector configuration: per-site rules plus shared templates."""

    sites: Dict[str, Dict[str, str]] = field(default_factory=dict)
    templates: Dict[str, Dict[str, str]] = field(default_factory=dict)
