"""
Warehouse Catalog

Declares the dimensions and facts the loader knows about: field types,
which attributes are overwritten in place (SCD type 1) and which are
version-tracked (SCD type 2), fact references and measures, and the order
in which dimensions load.

Every dimension attribute must state its SCD type explicitly. Whether a
studio's parent company change is history or a correction is a modelling
decision, so there is no default.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple, Type

from movie_warehouse.database.models import (
    Base,
    DimDirector,
    DimMovie,
    DimStudio,
    FactMoviePerformance,
)
from movie_warehouse.warehouse.exceptions import CatalogError


class FieldType(str, Enum):
    """Supported field types for incoming records"""
    STRING = "string"
    INTEGER = "integer"
    DATE = "date"
    DECIMAL = "decimal"


class SCDType(int, Enum):
    """Slowly changing dimension handling for an attribute"""
    TYPE_1 = 1  # overwrite in place
    TYPE_2 = 2  # new version


@dataclass(frozen=True)
class FieldSpec:
    """Expected field in an incoming record"""
    name: str
    field_type: FieldType
    required: bool = False


@dataclass(frozen=True)
class AttributeSpec:
    """Dimension attribute with its SCD handling"""
    name: str
    field_type: FieldType
    scd_type: SCDType
    required: bool = False

    @property
    def field(self) -> FieldSpec:
        return FieldSpec(self.name, self.field_type, self.required)


@dataclass(frozen=True)
class DimensionSpec:
    """Declared dimension table"""
    name: str
    model: Type[Base]
    attributes: Tuple[AttributeSpec, ...]

    @property
    def attribute_names(self) -> List[str]:
        return [a.name for a in self.attributes]

    @property
    def tracked_attributes(self) -> List[str]:
        """Type-2 attribute names"""
        return [a.name for a in self.attributes if a.scd_type == SCDType.TYPE_2]

    @property
    def schema(self) -> List[FieldSpec]:
        return [a.field for a in self.attributes]

    def scd_type_of(self, attribute: str) -> SCDType:
        for a in self.attributes:
            if a.name == attribute:
                return a.scd_type
        raise KeyError(attribute)


@dataclass(frozen=True)
class DimensionRef:
    """
    A fact's reference to a dimension.

    `field` is the record attribute carrying the dimension business key;
    the fact table stores `<column_prefix>_key` and `<column_prefix>_version`.
    """
    dimension: str
    field: str
    column_prefix: str
    required: bool = True

    @property
    def key_column(self) -> str:
        return f"{self.column_prefix}_key"

    @property
    def version_column(self) -> str:
        return f"{self.column_prefix}_version"


@dataclass(frozen=True)
class FactSpec:
    """Declared fact table"""
    name: str
    model: Type[Base]
    references: Tuple[DimensionRef, ...]
    measures: Tuple[FieldSpec, ...]

    @property
    def measure_names(self) -> List[str]:
        return [m.name for m in self.measures]

    @property
    def schema(self) -> List[FieldSpec]:
        refs = [FieldSpec(r.field, FieldType.STRING, r.required) for r in self.references]
        return refs + list(self.measures)


@dataclass
class WarehouseCatalog:
    """
    The set of loadable entities.

    Dimensions load in `load_order` (declaration order when omitted), all
    before any fact.
    """
    dimensions: Sequence[DimensionSpec]
    facts: Sequence[FactSpec]
    load_order: Optional[Sequence[str]] = None
    _dimensions: Dict[str, DimensionSpec] = field(init=False, repr=False)
    _facts: Dict[str, FactSpec] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._dimensions = {}
        self._facts = {}

        for dim in self.dimensions:
            if dim.name in self._dimensions:
                raise CatalogError(f"Duplicate dimension: {dim.name}")
            self._validate_dimension(dim)
            self._dimensions[dim.name] = dim

        for fact in self.facts:
            if fact.name in self._facts or fact.name in self._dimensions:
                raise CatalogError(f"Duplicate entity name: {fact.name}")
            self._validate_fact(fact)
            self._facts[fact.name] = fact

        if self.load_order is None:
            self.load_order = [d.name for d in self.dimensions]
        elif sorted(self.load_order) != sorted(self._dimensions):
            raise CatalogError(
                f"Load order {list(self.load_order)} must list every dimension exactly once"
            )

    def _validate_dimension(self, dim: DimensionSpec) -> None:
        names = dim.attribute_names
        if len(set(names)) != len(names):
            raise CatalogError(f"Duplicate attribute in {dim.name}")
        for attr in dim.attributes:
            if not isinstance(attr.scd_type, SCDType):
                raise CatalogError(f"{dim.name}.{attr.name} has no SCD type")
            if not hasattr(dim.model, attr.name):
                raise CatalogError(f"{dim.model.__name__} has no column {attr.name}")

    def _validate_fact(self, fact: FactSpec) -> None:
        for ref in fact.references:
            if ref.dimension not in self._dimensions:
                raise CatalogError(f"{fact.name} references unknown dimension {ref.dimension}")
            for column in (ref.key_column, ref.version_column):
                if not hasattr(fact.model, column):
                    raise CatalogError(f"{fact.model.__name__} has no column {column}")
        for measure in fact.measures:
            if not hasattr(fact.model, measure.name):
                raise CatalogError(f"{fact.model.__name__} has no column {measure.name}")

    def dimension(self, name: str) -> DimensionSpec:
        try:
            return self._dimensions[name]
        except KeyError:
            raise CatalogError(f"Unknown dimension: {name}") from None

    def fact(self, name: str) -> FactSpec:
        try:
            return self._facts[name]
        except KeyError:
            raise CatalogError(f"Unknown fact: {name}") from None

    def is_dimension(self, name: str) -> bool:
        return name in self._dimensions

    def is_fact(self, name: str) -> bool:
        return name in self._facts

    @property
    def entity_names(self) -> List[str]:
        return list(self._dimensions) + list(self._facts)

    def schema_for(self, name: str) -> List[FieldSpec]:
        if name in self._dimensions:
            return self._dimensions[name].schema
        return self.fact(name).schema


def build_movie_catalog() -> WarehouseCatalog:
    """The movie star schema shipped with the loader."""
    S, I, D = FieldType.STRING, FieldType.INTEGER, FieldType.DECIMAL
    T1, T2 = SCDType.TYPE_1, SCDType.TYPE_2

    dim_movie = DimensionSpec(
        name="dim_movie",
        model=DimMovie,
        attributes=(
            AttributeSpec("primary_title", S, T1, required=True),
            AttributeSpec("original_title", S, T1),
            AttributeSpec("release_year", I, T1),
            AttributeSpec("runtime_minutes", I, T1),
            AttributeSpec("genres", S, T2),
            AttributeSpec("content_rating", S, T2),
        ),
    )
    dim_director = DimensionSpec(
        name="dim_director",
        model=DimDirector,
        attributes=(
            AttributeSpec("credited_name", S, T2, required=True),
            AttributeSpec("birth_year", I, T1),
        ),
    )
    dim_studio = DimensionSpec(
        name="dim_studio",
        model=DimStudio,
        attributes=(
            AttributeSpec("studio_name", S, T1, required=True),
            AttributeSpec("parent_company", S, T2),
            AttributeSpec("country", S, T1),
        ),
    )
    fact_performance = FactSpec(
        name="fact_movie_performance",
        model=FactMoviePerformance,
        references=(
            DimensionRef("dim_movie", "title_id", "movie"),
            DimensionRef("dim_director", "director_id", "director"),
            DimensionRef("dim_studio", "studio_id", "studio", required=False),
        ),
        measures=(
            FieldSpec("average_rating", D, required=True),
            FieldSpec("num_votes", I, required=True),
            FieldSpec("gross_revenue", D),
            FieldSpec("budget", D),
        ),
    )

    return WarehouseCatalog(
        dimensions=[dim_movie, dim_director, dim_studio],
        facts=[fact_performance],
        load_order=["dim_director", "dim_studio", "dim_movie"],
    )
