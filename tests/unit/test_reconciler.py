"""
Unit Tests - SCD Reconciler
"""
from datetime import date, timedelta

import pytest

from movie_warehouse.database.models import OPEN_END_DATE
from movie_warehouse.warehouse.exceptions import RejectReason, StaleRecordError
from movie_warehouse.warehouse.reconciler import ReconcileAction


def director(name="J. Smith", birth_year=1950):
    return {"credited_name": name, "birth_year": birth_year}


async def reconcile_director(reconciler, session, attributes, as_of, batch_id="b1", key="nm0000001"):
    return await reconciler.reconcile(
        session, "dim_director", key, None, attributes, as_of, batch_id
    )


class TestFirstInsert:
    """Tests for business keys seen for the first time"""

    async def test_creates_open_current_version(self, test_db, reconciler):
        """Test version 1 starts at as_of and stays open"""
        result = await reconcile_director(reconciler, test_db, director(), date(2020, 1, 1))

        assert result.action == ReconcileAction.INSERTED
        assert (result.surrogate_key, result.version) == (1, 1)

        [row] = await reconciler.history(test_db, "dim_director", "nm0000001")
        assert row.effective_from == date(2020, 1, 1)
        assert row.effective_to == OPEN_END_DATE
        assert row.is_current is True
        assert row.credited_name == "J. Smith"
        assert row.load_batch_id == "b1"


class TestTypeTwoChanges:
    """Tests for tracked attribute changes"""

    async def test_credited_name_change_creates_version(self, test_db, reconciler):
        """Test J. Smith -> John Smith closes the old row the day before"""
        await reconcile_director(reconciler, test_db, director("J. Smith"), date(2020, 1, 1), "b1")
        result = await reconcile_director(
            reconciler, test_db, director("John Smith"), date(2021, 6, 1), "b2"
        )

        assert result.action == ReconcileAction.NEW_VERSION
        assert result.surrogate_key == 1
        assert result.version == 2
        assert result.closed_at == date(2021, 5, 31)
        assert result.effective_from == date(2021, 6, 1)

        old, new = await reconciler.history(test_db, "dim_director", "nm0000001")
        assert (old.surrogate_key, new.surrogate_key) == (1, 1)
        assert old.effective_to == date(2021, 5, 31)
        assert old.is_current is False
        assert old.updated_batch_id == "b2"
        assert new.effective_from == date(2021, 6, 1)
        assert new.effective_to == OPEN_END_DATE
        assert new.is_current is True
        assert new.credited_name == "John Smith"

    async def test_new_version_carries_type_one_values(self, test_db, reconciler):
        """Test a mixed change lands entirely on the new version"""
        await reconcile_director(reconciler, test_db, director("J. Smith", 1950), date(2020, 1, 1))
        result = await reconcile_director(
            reconciler, test_db, director("John Smith", 1951), date(2021, 1, 1)
        )

        assert result.action == ReconcileAction.NEW_VERSION
        assert sorted(result.changed_fields) == ["birth_year", "credited_name"]
        old, new = await reconciler.history(test_db, "dim_director", "nm0000001")
        assert old.birth_year == 1950
        assert new.birth_year == 1951

    async def test_same_day_change_corrects_current(self, test_db, reconciler):
        """Test a tracked change dated on effective_from does not open an empty range"""
        await reconcile_director(reconciler, test_db, director("J. Smith"), date(2020, 1, 1))
        result = await reconcile_director(
            reconciler, test_db, director("John Smith"), date(2020, 1, 1)
        )

        assert result.action == ReconcileAction.CORRECTED_IN_PLACE
        [row] = await reconciler.history(test_db, "dim_director", "nm0000001")
        assert row.credited_name == "John Smith"

    async def test_history_is_gapless_and_non_overlapping(self, test_db, reconciler):
        """Test several versions tile the timeline"""
        names = ["J. Smith", "John Smith", "John A. Smith", "Jack Smith"]
        dates = [date(2019, 3, 1), date(2020, 1, 1), date(2020, 1, 2), date(2023, 8, 15)]
        for name, as_of in zip(names, dates):
            await reconcile_director(reconciler, test_db, director(name), as_of)

        rows = await reconciler.history(test_db, "dim_director", "nm0000001")

        assert [r.version for r in rows] == [1, 2, 3, 4]
        assert [r.is_current for r in rows] == [False, False, False, True]
        assert rows[0].effective_from == dates[0]
        for earlier, later in zip(rows, rows[1:]):
            assert earlier.effective_from <= earlier.effective_to
            assert earlier.effective_to + timedelta(days=1) == later.effective_from
        assert rows[-1].effective_to == OPEN_END_DATE


class TestTypeOneChanges:
    """Tests for overwrite-in-place attributes"""

    async def test_birth_year_fix_is_in_place(self, test_db, reconciler):
        """Test a type-1 change keeps dates and version"""
        await reconcile_director(reconciler, test_db, director(birth_year=1905), date(2020, 1, 1))
        result = await reconcile_director(
            reconciler, test_db, director(birth_year=1950), date(2021, 6, 1), "b2"
        )

        assert result.action == ReconcileAction.CORRECTED_IN_PLACE
        assert result.changed_fields == ["birth_year"]
        [row] = await reconciler.history(test_db, "dim_director", "nm0000001")
        assert row.birth_year == 1950
        assert row.effective_from == date(2020, 1, 1)
        assert row.effective_to == OPEN_END_DATE
        assert row.updated_batch_id == "b2"


class TestNoChangeAndStale:
    """Tests for no-op and late records"""

    async def test_identical_record_is_no_change(self, test_db, reconciler):
        """Test re-sending the same image"""
        await reconcile_director(reconciler, test_db, director(), date(2020, 1, 1))
        result = await reconcile_director(reconciler, test_db, director(), date(2020, 1, 1), "b2")

        assert result.action == ReconcileAction.NO_CHANGE
        [row] = await reconciler.history(test_db, "dim_director", "nm0000001")
        assert row.updated_batch_id is None

    async def test_late_record_is_rejected(self, test_db, reconciler):
        """Test records older than the current version"""
        await reconcile_director(reconciler, test_db, director("J. Smith"), date(2020, 1, 1))
        await reconcile_director(reconciler, test_db, director("John Smith"), date(2021, 6, 1))

        with pytest.raises(StaleRecordError) as exc_info:
            await reconcile_director(reconciler, test_db, director("Johnny"), date(2021, 1, 1))

        assert exc_info.value.reason == RejectReason.STALE_AS_OF_DATE
        rows = await reconciler.history(test_db, "dim_director", "nm0000001")
        assert [r.credited_name for r in rows] == ["J. Smith", "John Smith"]

    async def test_replayed_history_is_no_change(self, test_db, reconciler):
        """Test a late record matching the version in effect on its date"""
        await reconcile_director(reconciler, test_db, director("J. Smith"), date(2020, 1, 1))
        await reconcile_director(reconciler, test_db, director("John Smith"), date(2021, 6, 1))

        result = await reconcile_director(
            reconciler, test_db, director("J. Smith"), date(2020, 1, 1), "b3"
        )

        assert result.action == ReconcileAction.NO_CHANGE
        assert result.version == 1
        rows = await reconciler.history(test_db, "dim_director", "nm0000001")
        assert len(rows) == 2
        assert "b3" not in {r.updated_batch_id for r in rows}

    async def test_superseded_type_one_value_keeps_later_fix(self, test_db, reconciler):
        """Test an older birth year dated before a later correction is ignored"""
        await reconcile_director(reconciler, test_db, director(birth_year=1905), date(2020, 1, 1))
        await reconcile_director(reconciler, test_db, director(birth_year=1950), date(2020, 6, 1), "b2")

        result = await reconcile_director(
            reconciler, test_db, director(birth_year=1905), date(2020, 3, 1), "b3"
        )

        assert result.action == ReconcileAction.NO_CHANGE
        [row] = await reconciler.history(test_db, "dim_director", "nm0000001")
        assert row.birth_year == 1950
        assert row.last_change_as_of == date(2020, 6, 1)

    async def test_superseded_tracked_change_is_stale(self, test_db, reconciler):
        """Test a type-2 change dated before a later correction"""
        await reconcile_director(reconciler, test_db, director(birth_year=1905), date(2020, 1, 1))
        await reconcile_director(reconciler, test_db, director(birth_year=1950), date(2020, 6, 1), "b2")

        with pytest.raises(StaleRecordError):
            await reconcile_director(
                reconciler, test_db, director("John Smith", 1950), date(2020, 3, 1), "b3"
            )

    async def test_replay_on_same_date_keeps_later_batch(self, test_db, reconciler):
        """Test a replayed batch cannot overwrite a same-day correction from a later batch"""
        await reconcile_director(reconciler, test_db, director(birth_year=1905), date(2020, 1, 1), "b1")
        await reconcile_director(reconciler, test_db, director(birth_year=1950), date(2020, 1, 1), "b2")

        result = await reconciler.reconcile(
            test_db, "dim_director", "nm0000001", None,
            director(birth_year=1905), date(2020, 1, 1), "b1", replay=True,
        )

        assert result.action == ReconcileAction.NO_CHANGE
        [row] = await reconciler.history(test_db, "dim_director", "nm0000001")
        assert row.birth_year == 1950

    async def test_missing_optional_attribute_is_null(self, test_db, reconciler):
        """Test the incoming record is the full attribute image"""
        await reconcile_director(reconciler, test_db, director(birth_year=1950), date(2020, 1, 1))
        result = await reconcile_director(
            reconciler, test_db, {"credited_name": "J. Smith"}, date(2020, 2, 1)
        )

        assert result.action == ReconcileAction.CORRECTED_IN_PLACE
        [row] = await reconciler.history(test_db, "dim_director", "nm0000001")
        assert row.birth_year is None
