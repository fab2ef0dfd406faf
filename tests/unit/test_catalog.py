"""
Unit Tests - Warehouse Catalog
"""
import pytest

from movie_warehouse.database.models import DimDirector, FactMoviePerformance
from movie_warehouse.warehouse.catalog import (
    AttributeSpec,
    DimensionRef,
    DimensionSpec,
    FactSpec,
    FieldSpec,
    FieldType,
    SCDType,
    WarehouseCatalog,
)
from movie_warehouse.warehouse.exceptions import CatalogError


def director_dimension(**overrides):
    spec = {
        "name": "dim_director",
        "model": DimDirector,
        "attributes": (
            AttributeSpec("credited_name", FieldType.STRING, SCDType.TYPE_2, required=True),
            AttributeSpec("birth_year", FieldType.INTEGER, SCDType.TYPE_1),
        ),
    }
    spec.update(overrides)
    return DimensionSpec(**spec)


class TestMovieCatalog:
    """Tests for the shipped movie catalog"""

    def test_dimensions_load_before_facts(self, catalog):
        """Test declared order and entity names"""
        assert list(catalog.load_order) == ["dim_director", "dim_studio", "dim_movie"]
        assert catalog.entity_names[-1] == "fact_movie_performance"
        assert catalog.is_fact("fact_movie_performance")
        assert not catalog.is_dimension("fact_movie_performance")

    def test_tracked_attributes(self, catalog):
        """Test type-2 attributes per dimension"""
        assert catalog.dimension("dim_director").tracked_attributes == ["credited_name"]
        assert catalog.dimension("dim_studio").tracked_attributes == ["parent_company"]
        assert catalog.dimension("dim_movie").tracked_attributes == ["genres", "content_rating"]

    def test_fact_schema_includes_reference_fields(self, catalog):
        """Test fact schemas carry the dimension business key fields"""
        names = [f.name for f in catalog.schema_for("fact_movie_performance")]
        assert names[:3] == ["title_id", "director_id", "studio_id"]
        assert "average_rating" in names

    def test_unknown_entity(self, catalog):
        """Test lookups of undeclared entities"""
        with pytest.raises(CatalogError):
            catalog.dimension("dim_actor")
        with pytest.raises(CatalogError):
            catalog.schema_for("fact_box_office")


class TestCatalogValidation:
    """Tests for catalog declaration errors"""

    def test_scd_type_must_be_declared(self):
        """Test attributes without an SCDType member are refused"""
        dim = director_dimension(
            attributes=(AttributeSpec("credited_name", FieldType.STRING, None),)
        )
        with pytest.raises(CatalogError):
            WarehouseCatalog(dimensions=[dim], facts=[])

    def test_attribute_must_exist_on_model(self):
        """Test attributes map onto model columns"""
        dim = director_dimension(
            attributes=(AttributeSpec("nickname", FieldType.STRING, SCDType.TYPE_1),)
        )
        with pytest.raises(CatalogError):
            WarehouseCatalog(dimensions=[dim], facts=[])

    def test_fact_reference_must_be_declared(self):
        """Test facts cannot reference undeclared dimensions"""
        fact = FactSpec(
            name="fact_movie_performance",
            model=FactMoviePerformance,
            references=(DimensionRef("dim_movie", "title_id", "movie"),),
            measures=(FieldSpec("num_votes", FieldType.INTEGER),),
        )
        with pytest.raises(CatalogError):
            WarehouseCatalog(dimensions=[director_dimension()], facts=[fact])

    def test_load_order_must_cover_dimensions(self):
        """Test a partial load order is refused"""
        with pytest.raises(CatalogError):
            WarehouseCatalog(
                dimensions=[director_dimension()],
                facts=[],
                load_order=["dim_director", "dim_studio"],
            )

    def test_duplicate_dimension(self):
        """Test dimension names are unique"""
        with pytest.raises(CatalogError):
            WarehouseCatalog(dimensions=[director_dimension(), director_dimension()], facts=[])
