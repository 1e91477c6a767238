from conftest import SIZE
from ogimage import Faces, load_faces, measure_line, wrap_line, wrap_title


def test_short_line_is_left_alone(faces):
    assert wrap_line("Hello", 840, faces) == ["Hello"]


def test_empty_line_produces_nothing(faces):
    assert wrap_line("", 840, faces) == []


def test_latin_wraps_mid_word(faces):
    # Character-level wrapping: no word boundaries are honoured
    assert wrap_line("abcdefgh", 200, faces) == ["abcd", "efgh"]


def test_cjk_wraps_at_width(faces):
    assert wrap_line("日本語漢字日本語漢字", 450, faces) == ["日本語漢", "字日本語", "漢字"]


def test_wide_character_gets_its_own_line(faces):
    assert wrap_line("日本", 60, faces) == ["日", "本"]


def test_every_wrapped_line_fits(faces):
    title = "Go言語でOG画像を生成する Share Card 共有カード"
    lines = wrap_line(title, 300, faces)

    assert "".join(lines) == title
    for line in lines:
        assert len(line) == 1 or measure_line(line, faces) <= 300


def test_faceless_characters_take_no_width(cjk_font_bytes):
    faces = load_faces(None, cjk_font_bytes, SIZE)
    assert wrap_line("abc日本", 150, faces) == ["abc日", "本"]


def test_nothing_to_measure_keeps_one_line():
    assert wrap_line("anything at all", 1, Faces()) == ["anything at all"]


def test_explicit_breaks_split_before_wrapping(faces):
    assert wrap_title("日本語漢字\nab", 250, faces) == ["日本", "語漢", "字", "ab"]


def test_blank_chunks_add_no_lines(faces):
    assert wrap_title("One\n\nTwo\n", 840, faces) == ["One", "Two"]
    assert wrap_title("", 840, faces) == []
    assert wrap_title("\n", 840, faces) == []
