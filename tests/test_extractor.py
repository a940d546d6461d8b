"""Tests for name extraction from generated prose."""

from narrative_director.graph.extractor import CapitalizedNameExtractor, ExtractedEntity


class TestCapitalizedNameExtractor:
    """Tests for the capitalization heuristic."""

    def test_finds_npcs_and_locations(self):
        extractor = CapitalizedNameExtractor()
        text = "Elder Mira waits at Stonebridge. Later, Oren arrives from the Whispering Woods."

        entities = extractor.extract(text)

        labels = {e.text: e.label for e in entities}
        assert labels["Elder Mira"] == "NPC"
        assert labels["Stonebridge"] == "LOCATION"
        assert labels["Whispering Woods"] == "LOCATION"
        assert labels["Oren"] == "NPC"

    def test_sentence_openers_are_not_names(self):
        extractor = CapitalizedNameExtractor()
        text = "The road is long. Every traveler rests. Then you continue."

        assert extractor.extract(text) == []

    def test_stopword_prefix_is_stripped(self):
        extractor = CapitalizedNameExtractor()

        entities = extractor.extract("The Elder speaks softly.")

        assert [e.text for e in entities] == ["Elder"]

    def test_empty_and_non_string_input(self):
        extractor = CapitalizedNameExtractor()
        assert extractor.extract("") == []
        assert extractor.extract(None) == []

    def test_extra_stopwords(self):
        extractor = CapitalizedNameExtractor(extra_stopwords={"Later"})
        texts = [e.text for e in extractor.extract("Later, Oren arrives.")]
        assert texts == ["Oren"]

    def test_deduplication_prefers_location_reading(self):
        extractor = CapitalizedNameExtractor()

        deduped = extractor._deduplicate([
            ExtractedEntity("Stonebridge", "NPC", 0, 11, 0.5),
            ExtractedEntity("Stonebridge", "LOCATION", 30, 41, 0.6),
        ])

        assert len(deduped) == 1
        assert deduped[0].label == "LOCATION"
        assert deduped[0].start_char == 0
