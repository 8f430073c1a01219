from cloze_app.core.template_renderer import ClozeRenderer, display_text


class TestClozeRenderer:
    def test_blanks_become_slots(self):
        html = ClozeRenderer().render_fragment("___ and ___ are **primary** colors.", ["Red"])
        assert '<span class="cloze-slot filled" data-slot="0">Red</span>' in html
        assert '<span class="cloze-slot" data-slot="1">?</span>' in html
        assert "<strong>primary</strong>" in html
        assert "<hr" not in html

    def test_fill_is_escaped(self):
        html = ClozeRenderer().render_fragment("Tag: ___", ["<b>"])
        assert "&lt;b&gt;" in html

    def test_empty_text(self):
        assert "No content" in ClozeRenderer().render_fragment("   ")

    def test_display_text_collapses_runs(self):
        assert display_text("a _______ b ___ c") == "a ___ b ___ c"
