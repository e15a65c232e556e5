"""
Tests for Character Identity Block handling.
"""

from relive.identity import (anchor_characters, enforce_fixed_hair, fallback_identity_block,
                             identity_anchor, resolve_identity_block, scrub_clothing)
from relive.models import CharacterProfile


class TestScrubClothing:
    """Clothing never survives into an identity block."""

    def test_drops_clothing_sentences(self):
        cib = "Oval face with high cheekbones. She is wearing a red hoodie. Dark brown eyes."
        assert scrub_clothing(cib) == "Oval face with high cheekbones. Dark brown eyes."

    def test_keeps_clean_text(self):
        cib = "Square jaw, light freckles, warm olive skin."
        assert scrub_clothing(cib) == cib

    def test_keeps_eyewear(self):
        cib = ("Mina is a Korean woman with fair skin, an oval face, dark brown eyes, "
               "full lips, and she wears thin round glasses.")
        assert scrub_clothing(cib) == cib

    def test_drops_only_the_clothing_clause(self):
        cib = ("Mina has an oval face, dark brown eyes and a small mole under her left eye, "
               "wearing a grey hoodie.")
        assert scrub_clothing(cib) == (
            "Mina has an oval face, dark brown eyes and a small mole under her left eye.")

    def test_marker_survives_next_to_garment(self):
        cib = "Round face. She wears silver hoop earrings and a red scarf."
        assert scrub_clothing(cib) == "Round face. She wears silver hoop earrings."

    def test_leading_clothing_clause(self):
        cib = "Dressed in a navy blazer, with a thin scar over her right eyebrow."
        assert scrub_clothing(cib) == "With a thin scar over her right eyebrow."


class TestResolveIdentityBlock:
    """Tests for resolve_identity_block."""

    def test_name_match_is_case_insensitive(self, profile):
        cib, degraded = resolve_identity_block(profile, {"mina": "Oval face, dark eyes."})
        assert not degraded
        assert cib.startswith("Oval face, dark eyes.")

    def test_fixed_hair_appended(self, profile):
        cib, _ = resolve_identity_block(profile, {"Mina": "Oval face, dark eyes."})
        assert "short black bob" in cib

    def test_fixed_hair_not_duplicated(self):
        cib = "Oval face. Hair is a short black bob."
        assert enforce_fixed_hair(cib, "short black bob") == cib

    def test_missing_entry_falls_back(self, profile):
        cib, degraded = resolve_identity_block(profile, {"Jun": "Round face."})
        assert degraded
        assert cib == fallback_identity_block("Mina") == "A person named Mina"

    def test_single_sentence_with_glasses_is_kept(self, profile):
        cib, degraded = resolve_identity_block(profile, {
            "Mina": "Mina is a Korean woman with fair skin, an oval face, full lips, "
                    "and she wears thin round glasses."})
        assert not degraded
        assert "glasses" in cib

    def test_only_clothing_falls_back(self, profile):
        cib, degraded = resolve_identity_block(profile, {"Mina": "Wearing a navy suit."})
        assert degraded
        assert cib == "A person named Mina"


class TestAnchorCharacters:
    """Tests for anchor_characters."""

    def test_every_profile_gets_a_block(self, profile, reference, quiet_log):
        jun = CharacterProfile(name="Jun", referenceImage=reference)
        anchored, degraded = anchor_characters(
            [profile, jun], {"Mina": "Oval face."}, quiet_log)
        assert [c.identityBlock is not None for c in anchored] == [True, True]
        assert anchored[1].identityBlock == "A person named Jun"
        assert degraded == ["Jun"]

    def test_blocks_are_logged(self, profile, quiet_log):
        anchor_characters([profile], {"Mina": "Oval face."}, quiet_log)
        assert any("CHARACTER_IDENTITY_BLOCK [Mina]" in block for block in quiet_log.lines)


class TestIdentityAnchor:
    """Tests for identity_anchor."""

    def test_override_wins(self, profile):
        anchored = profile.with_identity_block("Stored.")
        assert identity_anchor(anchored, "Override.") == "Override."

    def test_stored_block_used(self, profile):
        anchored = profile.with_identity_block("Stored.")
        assert identity_anchor(anchored) == "Stored."

    def test_no_profile(self):
        assert identity_anchor(None) is None
