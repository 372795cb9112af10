"""Tests for the table state store and the column filter extension."""

import pytest

from datagrid_engine.core.extensions import ColumnFilterExtension, TableExtension
from datagrid_engine.core.selection import SelectionExtension
from datagrid_engine.core.state import TableStateStore, functional_update


class TestFunctionalUpdate:
    def test_value_and_updater(self):
        assert functional_update(5, 1) == 5
        assert functional_update(lambda old: old + 1, 1) == 2


class TestStoreBasics:
    """Replacement, listeners and counter."""

    def test_defaults(self, store):
        state = store.get_state()
        assert state["sorting"] == []
        assert state["pagination"] == {"page_index": 0, "page_size": 10}
        assert state["global_filter"] == ""
        assert state["column_filter"]["filters"] == []
        assert state["selection"] == {"ids": [], "type": "include"}

    def test_listeners_notified_after_replacement(self, store):
        calls = []
        store.subscribe(lambda state, name: calls.append((name, state["global_filter"])))

        store.set_global_filter("abc")

        assert calls == [("global_filter", "abc")]

    def test_unsubscribe(self, store):
        calls = []
        unsubscribe = store.subscribe(lambda state, name: calls.append(name))
        unsubscribe()

        store.set_global_filter("abc")

        assert calls == []

    def test_counter_increments_on_every_replacement(self, store):
        assert store.counter == 0
        store.set_global_filter("a")
        store.set_page_index(2)
        assert store.counter == 2

    def test_state_is_never_mutated_in_place(self, store):
        before = store.get_state()
        snapshot = store.get("sorting")
        snapshot.append({"column_id": "x", "direction": "asc"})

        store.set_global_filter("abc")

        assert before["global_filter"] == ""
        assert store.get("sorting") == []

    def test_unknown_initial_slice_raises(self):
        with pytest.raises(ValueError, match="Unknown state slice"):
            TableStateStore(initial_state={"nope": 1})

    def test_duplicate_extension_raises(self):
        with pytest.raises(ValueError, match="already registered"):
            TableStateStore([ColumnFilterExtension(), ColumnFilterExtension()])

    def test_missing_extension_raises_key_error(self):
        with pytest.raises(KeyError):
            TableStateStore().extension("selection")


class TestSpecialTransitions:
    """Sorting, pagination and global filter transitions."""

    def test_page_size_change_resets_page(self, store):
        store.set_pagination({"page_index": 3, "page_size": 10})
        assert store.get("pagination") == {"page_index": 3, "page_size": 10}

        store.set_pagination(lambda p: {**p, "page_size": 25})

        assert store.get("pagination") == {"page_index": 0, "page_size": 25}

    def test_page_index_change_keeps_size(self, store):
        store.set_page_index(4)
        assert store.get("pagination") == {"page_index": 4, "page_size": 10}

    def test_invalid_pagination_raises(self, store):
        with pytest.raises(ValueError):
            store.set_page_size(0)
        with pytest.raises(ValueError):
            store.set_page_index(-1)

    def test_sorting_drops_empty_column_ids(self, store):
        store.set_sorting([
            {"column_id": "", "direction": "asc"},
            {"column_id": "age", "direction": "desc"},
            {"column_id": "name"},
        ])

        assert store.get("sorting") == [
            {"column_id": "age", "direction": "desc"},
            {"column_id": "name", "direction": "asc"},
        ]

    def test_sorting_resets_page(self, store):
        store.set_page_index(3)
        store.set_sorting([{"column_id": "age", "direction": "asc"}])
        assert store.get("pagination")["page_index"] == 0

    def test_global_filter_resets_page(self, store):
        store.set_page_index(3)
        store.set_global_filter("abc")
        assert store.get("pagination")["page_index"] == 0

    def test_layout_setters(self, store):
        store.set_column_visibility({"age": False})
        store.set_column_order(["name", "age"])
        store.set_column_pinning({"left": ["name"]})
        store.set_column_sizing(lambda s: {**s, "name": 120})

        state = store.get_state()
        assert state["column_visibility"] == {"age": False}
        assert state["column_order"] == ["name", "age"]
        assert state["column_pinning"] == {"left": ["name"], "right": []}
        assert state["column_sizing"] == {"name": 120}

    def test_reset_all_restores_initial_state(self):
        store = TableStateStore(
            [ColumnFilterExtension()],
            initial_state={"pagination": {"page_index": 0, "page_size": 50}},
        )
        store.set_global_filter("abc")
        store.set_page_index(2)

        store.reset_all()

        assert store.get("global_filter") == ""
        assert store.get("pagination") == {"page_index": 0, "page_size": 50}


class TestCanonicalQuery:
    """Derived query contents."""

    def test_query_contains_only_applied_filters(self, store):
        filters = store.extension("column_filter")
        filters.add_pending_filter("name", "contains", "Jo")

        query = store.get_query()

        assert query["column_filter"] == {"filters": [], "logic": "AND"}
        assert "pending_filters" not in query["column_filter"]

    def test_query_with_selection(self, store):
        assert "selection" not in store.get_query()
        assert store.get_query(include_selection=True)["selection"] == {
            "ids": [], "type": "include"
        }

    def test_restore_keeps_saved_page(self, store):
        store.restore({
            "sorting": [{"column_id": "age", "direction": "asc"}],
            "global_filter": "jo",
            "pagination": {"page_index": 3, "page_size": 25},
        })

        assert store.get("pagination") == {"page_index": 3, "page_size": 25}
        assert store.get("sorting") == [{"column_id": "age", "direction": "asc"}]
        assert store.get("global_filter") == "jo"


class TestColumnFilterExtension:
    """Draft/apply filter editing."""

    def test_pending_edits_do_not_change_query(self, store):
        filters = store.extension("column_filter")
        before = store.get_query()

        filter_id = filters.add_pending_filter("name", "contains", "Jo")
        filters.update_pending_filter(filter_id, {"value": "Amy"})
        filters.set_pending_logic("OR")

        assert store.get_query() == before
        assert filters.get_pending_filters()[0]["value"] == "Amy"

    def test_apply_copies_pending_and_resets_page(self, store):
        filters = store.extension("column_filter")
        store.set_page_index(4)
        filters.add_pending_filter("age", "greaterThan", 20, column_type="number")
        filters.set_pending_logic("or")

        filters.apply_pending_filters()

        query = store.get_query()
        assert query["column_filter"]["logic"] == "OR"
        assert query["column_filter"]["filters"][0]["column_id"] == "age"
        assert query["pagination"]["page_index"] == 0

    def test_applied_filters_are_copies(self, store):
        filters = store.extension("column_filter")
        filter_id = filters.add_pending_filter("name", "contains", "Jo")
        filters.apply_pending_filters()

        filters.update_pending_filter(filter_id, {"value": "Amy"})

        assert store.get_query()["column_filter"]["filters"][0]["value"] == "Jo"

    def test_filter_ids_are_generated_and_immutable(self, store):
        filters = store.extension("column_filter")
        first = filters.add_pending_filter("name", "contains", "a")
        second = filters.add_pending_filter("name", "contains", "b")
        assert first != second
        assert first.startswith("filter_")

        filters.update_pending_filter(first, {"id": "hijacked", "value": "c"})

        ids = [f["id"] for f in filters.get_pending_filters()]
        assert ids == [first, second]

    def test_remove_and_clear_pending(self, store):
        filters = store.extension("column_filter")
        first = filters.add_pending_filter("name", "contains", "a")
        filters.add_pending_filter("name", "contains", "b")

        filters.remove_pending_filter(first)
        assert len(filters.get_pending_filters()) == 1

        filters.clear_pending_filters()
        assert filters.get_pending_filters() == []

    def test_direct_filters_change_query(self, store):
        filters = store.extension("column_filter")
        filter_id = filters.add_filter("name", "contains", "Jo")

        assert store.get_query()["column_filter"]["filters"][0]["id"] == filter_id

        filters.remove_filter(filter_id)
        assert store.get_query()["column_filter"]["filters"] == []

    def test_active_filters_skip_incomplete(self, store):
        filters = store.extension("column_filter")
        filters.add_filter("name", "contains", "Jo")
        filters.add_filter("", "contains", "x")

        assert len(filters.get_active_filters()) == 1

    def test_reset_clears_everything(self, store):
        filters = store.extension("column_filter")
        filters.add_filter("name", "contains", "Jo")
        filters.add_pending_filter("age", "greaterThan", 3)

        filters.reset()

        state = filters.get_state()
        assert state["filters"] == [] and state["pending_filters"] == []

    def test_disabled_extension_ignores_edits(self):
        store = TableStateStore([ColumnFilterExtension(enabled=False)])
        filters = store.extension("column_filter")

        assert filters.add_pending_filter("name", "contains", "Jo") is None
        assert filters.get_pending_filters() == []


class TestCustomExtension:
    """Extensions contribute slices and methods."""

    def test_custom_extension(self):
        class DensityExtension(TableExtension):
            name = "density"

            def initial_state(self):
                return {"density": "standard"}

            def create_methods(self, store):
                class Methods:
                    def set_density(self, value):
                        store.set_state("density", value)

                return Methods()

        store = TableStateStore([DensityExtension(), SelectionExtension()])
        store.extension("density").set_density("compact")

        assert store.get("density") == "compact"
