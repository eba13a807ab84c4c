"""Tests for course markdown parsing."""
import pytest

from coursechat.rag.md_parser import (
    MarkdownParser,
    detect_asset_kind,
    extract_plain_text,
    is_asset_url,
    parse_markdown,
    slugify,
)


@pytest.fixture
def parser():
    return MarkdownParser()


def test_minimal_course_example(parser):
    course = parser.parse(
        "# My Course\n"
        "## Intro\n"
        "### Welcome\n"
        "Hello world.\n"
        "https://example.com/image.png\n"
    )

    assert course.title == "My Course"
    assert [n.slug for n in course.nanos] == ["intro"]
    unit = course.nanos[0].units[0]
    assert unit.slug == "welcome"
    assert unit.content_plain == "Hello world."
    assert unit.content == "Hello world."
    assert len(unit.assets) == 1
    assert unit.assets[0].url == "https://example.com/image.png"
    assert unit.assets[0].kind == "image"
    assert unit.assets[0].alt is None


def test_units_attributed_to_nearest_preceding_nano(parser):
    text = "\n".join([
        "# Course",
        "## First",
        "### A", "text a",
        "### B", "text b",
        "## Second",
        "### C", "text c",
        "## Third",
        "## Fourth",
        "### D", "text d",
        "### E", "text e",
        "### F", "text f",
    ])
    course = parser.parse(text)

    assert [n.slug for n in course.nanos] == ["first", "second", "third", "fourth"]
    assert [[u.slug for u in n.units] for n in course.nanos] == [
        ["a", "b"], ["c"], [], ["d", "e", "f"],
    ]
    assert course.unit_count == 6


def test_nano_order_is_source_order(parser):
    course = parser.parse("## Zebra\n### One\nx\n## Apple\n### Two\ny\n")
    assert [n.title for n in course.nanos] == ["Zebra", "Apple"]


def test_sample_course_structure(sample_course):
    course = parse_markdown(sample_course)

    assert course.title == "Night Supervision"
    assert course.frontmatter == {"level": "beginner", "duration": 30}
    assert [n.slug for n in course.nanos] == ["getting-started", "daily-routines"]
    assert [u.slug for u in course.units] == [
        "welcome", "equipment", "evening-checks", "alarm-handling",
    ]
    assert course.asset_count == 2

    welcome, equipment, _, alarm = course.units
    assert welcome.assets[0].kind == "audio"
    assert welcome.content_plain == (
        "Welcome to the night supervision course.\n"
        "This course explains sensors and cameras."
    )
    assert equipment.assets[0].alt == "Sensor layout"
    assert equipment.assets[0].kind == "image"
    assert equipment.content_plain == (
        "Motion sensor in the bedroom\nDoor sensor on the front door\nSensor layout"
    )
    assert alarm.content_plain == (
        "When an alarm goes off, follow the alarm guide.\n"
        "Confirm the alarm\nCall the resident"
    )


def test_plain_prose_round_trips_without_blank_lines(parser):
    # Blank lines are dropped on purpose; content is rebuilt with single newlines.
    course = parser.parse(
        "## Nano\n### Unit\n"
        "First paragraph line.\n\n\n"
        "   Second paragraph, indented.   \n"
        "\n"
        "Third line.\n"
    )
    unit = course.units[0]

    assert unit.content == "First paragraph line.\nSecond paragraph, indented.\nThird line."
    assert unit.content_plain == unit.content


def test_inline_image_is_asset_and_stays_in_content(parser):
    course = parser.parse("## N\n### U\nSee ![diagram](https://x.org/d.svg) here\n")
    unit = course.units[0]

    assert unit.assets[0].url == "https://x.org/d.svg"
    assert unit.assets[0].kind == "image"
    assert unit.assets[0].alt == "diagram"
    assert unit.content == "See ![diagram](https://x.org/d.svg) here"
    assert unit.content_plain == "See diagram here"


def test_inline_image_with_empty_alt_has_no_alt(parser):
    course = parser.parse("## N\n### U\n![](https://x.org/photo.jpg)\n")
    assert course.units[0].assets[0].alt is None


def test_bare_url_line_is_not_content(parser):
    course = parser.parse("## N\n### U\nIntro\nhttps://media.example.com/clip.wav\nOutro\n")
    unit = course.units[0]

    assert unit.content == "Intro\nOutro"
    assert unit.assets[0].kind == "audio"


def test_url_followed_by_prose_is_not_an_asset(parser):
    course = parser.parse("## N\n### U\nhttps://example.com/page is worth reading\n")
    unit = course.units[0]

    assert unit.assets == []
    assert unit.content == "https://example.com/page is worth reading"


def test_frontmatter_spanning_lines(parser):
    course = parser.parse(
        "[//]: # (\n"
        '{"level": "advanced",\n'
        ' "tags": ["alarm"]}\n'
        ")\n"
        "# Title\n## N\n### U\nbody\n"
    )
    assert course.frontmatter == {"level": "advanced", "tags": ["alarm"]}
    assert course.title == "Title"
    assert course.units[0].content == "body"


def test_malformed_frontmatter_is_tolerated(parser):
    course = parser.parse("[//]: # ({not valid json})\n# Title\n## N\n### U\nbody\n")

    assert course.frontmatter is None
    assert course.title == "Title"
    assert course.units[0].content == "body"


def test_unit_before_any_nano_opens_implicit_general_nano(parser):
    course = parser.parse("# T\n### Orphan\norphan text\n## Real\n### Child\nchild text\n")

    assert [n.slug for n in course.nanos] == ["general", "real"]
    assert course.nanos[0].title == "General"
    assert course.nanos[0].units[0].slug == "orphan"
    assert course.nanos[0].units[0].content == "orphan text"
    assert course.nanos[1].units[0].slug == "child"


def test_first_title_wins(parser):
    course = parser.parse("# First\n## N\n### U\nbody\n# Second\n")
    assert course.title == "First"
    assert course.units[0].content == "body"


def test_text_outside_units_is_dropped(parser):
    course = parser.parse("Preamble\n## N\nNano intro\n### U\nbody\n")
    assert course.units[0].content == "body"


def test_empty_unit_is_legal(parser):
    course = parser.parse("## N\n### Empty\n### Full\ntext\n")
    empty, full = course.units
    assert empty.content == ""
    assert empty.content_plain == ""
    assert full.content_plain == "text"


def test_deeper_headings_are_content(parser):
    course = parser.parse("## N\n### U\n#### Detail\ntext\n")
    assert course.units[0].content == "#### Detail\ntext"


@pytest.mark.parametrize(
    "title,expected",
    [
        ("Getting Started", "getting-started"),
        ("  Getting   Started  ", "getting-started"),
        ("GETTING started", "getting-started"),
        ("Hello, World!", "hello-world"),
        ("--Already--hyphenated--", "already-hyphenated"),
        ("Step 2: Alarms & Sensors", "step-2-alarms-sensors"),
        ("!!!", ""),
    ],
)
def test_slugify(title, expected):
    assert slugify(title) == expected


def test_slugify_is_deterministic():
    assert slugify("Alarm Handling") == slugify("Alarm Handling") == slugify(" alarm handling ")


@pytest.mark.parametrize(
    "line,expected",
    [
        ("https://example.com/a.png", True),
        ("http://example.com/a", True),
        ("//cdn.example.com/a.mp3", True),
        ("https://example.com/a b", False),
        ("ftp://example.com/a", False),
        ("see https://example.com", False),
    ],
)
def test_is_asset_url(line, expected):
    assert is_asset_url(line) is expected


@pytest.mark.parametrize(
    "url,kind",
    [
        ("https://x.org/a.MP3", "audio"),
        ("https://x.org/a.ogg", "audio"),
        ("https://x.org/a.jpeg?w=200", "image"),
        ("//cdn.x.org/a.webp", "image"),
        ("https://x.org/doc.pdf", "other"),
        ("https://x.org/video", "other"),
    ],
)
def test_detect_asset_kind(url, kind):
    assert detect_asset_kind(url) == kind


def test_extract_plain_text_strips_markdown():
    markdown = "\n".join([
        "> Quoted **bold** text",
        "- Item with *emphasis*",
        "* Another `code` item",
        "12. Numbered [link](https://x.org)",
        "![alt text](https://x.org/i.png)",
    ])
    assert extract_plain_text(markdown) == "\n".join([
        "Quoted bold text",
        "Item with emphasis",
        "Another code item",
        "Numbered link",
        "alt text",
    ])


def test_markdown_for_span_maps_plain_text_back_to_lines(parser):
    course = parser.parse("## N\n### U\n- **First** line\n- Second line\n- Third line\n")
    unit = course.units[0]
    plain = unit.content_plain
    assert plain == "First line\nSecond line\nThird line"

    start = plain.index("Second")
    assert unit.markdown_for_span(start, len(plain)) == "- Second line\n- Third line"
    assert unit.markdown_for_span(0, 5) == "- **First** line"
    assert unit.markdown_for_span(0, len(plain)) == unit.content


def test_parse_file(tmp_path, parser):
    path = tmp_path / "course.md"
    path.write_text("# File Course\n## N\n### U\nbody\n", encoding="utf-8")
    assert parser.parse_file(path).title == "File Course"

    with pytest.raises(FileNotFoundError):
        parser.parse_file(tmp_path / "missing.md")
