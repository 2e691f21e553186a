"""
Non-destructive tag merge tests
"""

from artimport.core.tag_merge import merge_tags


class TestMergeTags:
    """Existing values always win"""

    def test_new_key_is_added(self):
        delta = merge_tags({"material": "bronze"}, {"year": "1999"})
        assert delta.added == {"year": "1999"}
        assert delta.kept_existing == {}
        assert delta.unchanged == {}

    def test_conflicting_value_is_kept_and_incoming_discarded(self):
        delta = merge_tags({"material": "bronze"}, {"material": "steel"})
        assert delta.kept_existing == {"material": "bronze"}
        assert delta.discarded == {"material": "steel"}
        assert delta.added == {}

    def test_equal_after_normalization_is_unchanged(self):
        delta = merge_tags({"material": "Bronze"}, {"material": " bronze!"})
        assert delta.unchanged == {"material": "Bronze"}
        assert delta.kept_existing == {}

    def test_blank_existing_value_is_filled(self):
        delta = merge_tags({"material": "  "}, {"material": "bronze"})
        assert delta.added == {"material": "bronze"}

    def test_every_incoming_key_lands_in_exactly_one_bucket(self):
        existing = {"a": "1", "b": "2", "c": ""}
        incoming = {"a": "1", "b": "3", "c": "4", "d": "5"}
        delta = merge_tags(existing, incoming)
        buckets = [set(delta.added), set(delta.kept_existing), set(delta.unchanged)]
        for key in incoming:
            assert sum(key in bucket for bucket in buckets) == 1
        assert set(delta.kept_existing) <= {k for k in existing if existing[k] != incoming.get(k)}

    def test_merge_never_destroys_existing_data(self):
        existing = {"material": "bronze", "artist_note": "signed"}
        incoming = {"material": "steel", "year": "1999"}
        merged = merge_tags(existing, incoming).merged_with(existing)
        for key, value in existing.items():
            assert merged[key] == value
        assert merged["year"] == "1999"

    def test_empty_incoming(self):
        delta = merge_tags({"material": "bronze"}, {})
        assert delta.merged_with({"material": "bronze"}) == {"material": "bronze"}
        assert not delta.added and not delta.kept_existing and not delta.unchanged
