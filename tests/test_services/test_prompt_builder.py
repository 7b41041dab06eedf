"""Tests for prompt and reference enrichment."""

from shotforge.schemas.storyboard import Character, Location, StoryboardItem
from shotforge.services.prompt_builder import (
    build_enhanced_prompt,
    collect_reference_images,
    match_characters,
    match_location,
    split_character_names,
)


class TestSplitCharacterNames:
    def test_splits_on_all_separators(self):
        assert split_character_names("Aki， Mira、 Old Tom,") == ["Aki", "Mira", "Old Tom"]

    def test_empty_names_are_ignored(self):
        assert split_character_names(" , ，、 ") == []


class TestBuildEnhancedPrompt:
    def test_full_composition_order(self, character_library, location_library):
        """[P1] Prompt parts appear in order, each on its own line."""
        # GIVEN
        item = StoryboardItem(
            id="s1",
            ai_prompt="Aki waves from the boat",
            location="pier",
            characters="Aki, Mira",
            camera_angle="low angle",
            movement="slow push in",
        )

        # WHEN
        prompt = build_enhanced_prompt(item, location_library, character_library)

        # THEN
        assert prompt.split("\n") == [
            "Aki waves from the boat",
            "Location: a wooden pier at dawn",
            "Characters: Aki: a young fisher with a red scarf; Mira Sato: the harbor master",
            "Camera: low angle",
            "Movement: slow push in",
        ]

    def test_falls_back_to_description(self):
        item = StoryboardItem(id="s1", description="Wide shot of the harbor")

        assert build_enhanced_prompt(item) == "Wide shot of the harbor"

    def test_empty_item_gives_empty_prompt(self):
        assert build_enhanced_prompt(StoryboardItem(id="s1")) == ""

    def test_character_without_bio_uses_name_only(self, character_library):
        item = StoryboardItem(id="s1", ai_prompt="x", characters="old tom")

        assert build_enhanced_prompt(item, characters=character_library) == "x\nCharacters: Old Tom"


class TestMatching:
    def test_location_matches_in_both_directions(self, location_library):
        """Shot location may contain the library name or be contained by it."""
        inside = StoryboardItem(id="a", location="the old pier at night")
        partial = StoryboardItem(id="b", location="market")

        assert match_location(inside, location_library).id == "loc_pier"
        assert match_location(partial, location_library).id == "loc_market"

    def test_no_location_match(self, location_library):
        assert match_location(StoryboardItem(id="a", location="forest"), location_library) is None
        assert match_location(StoryboardItem(id="b"), location_library) is None

    def test_first_match_per_name(self):
        """[P2] Each name keeps its own first match, even when two names hit the same character."""
        characters = (
            Character(id="c1", name="Mira Sato"),
            Character(id="c2", name="Mira Jones"),
        )
        item = StoryboardItem(id="s", characters="mira, Jones, Mira Sato, nobody")

        matched = match_characters(item, characters)

        assert [c.id for c in matched] == ["c1", "c2", "c1"]

    def test_repeated_character_repeats_in_prompt_and_references(self, character_library):
        item = StoryboardItem(id="s", ai_prompt="x", characters="Aki, aki")

        assert build_enhanced_prompt(item, characters=character_library) == (
            "x\nCharacters: Aki: a young fisher with a red scarf; Aki: a young fisher with a red scarf"
        )
        assert [r.label for r in collect_reference_images(item, characters=character_library)] == ["Aki", "Aki"]


class TestCollectReferenceImages:
    def test_prefers_form_images_then_reference_url(self, character_library, location_library):
        """[P1] Form images win; reference_image_url is the fallback; missing images are skipped."""
        item = StoryboardItem(id="s", location="Pier", characters="Aki、Mira、Old Tom")

        references = collect_reference_images(item, location_library, character_library)

        assert [(r.type, r.url, r.label) for r in references] == [
            ("location", "https://cdn.test/pier_day.png", "Pier"),
            ("character", "https://cdn.test/aki_front.png", "Aki"),
            ("character", "https://cdn.test/mira.png", "Mira Sato"),
        ]

    def test_location_reference_url_fallback(self, location_library):
        item = StoryboardItem(id="s", location="Fish Market")

        references = collect_reference_images(item, location_library)

        assert [r.url for r in references] == ["https://cdn.test/market.png"]

    def test_no_libraries_no_references(self):
        item = StoryboardItem(id="s", location="Pier", characters="Aki")

        assert collect_reference_images(item) == []
        assert collect_reference_images(item, (Location(id="l", name="Forest"),)) == []
