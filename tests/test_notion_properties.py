import pytest

from lifeapp.services import notion_properties as props


def text_prop(kind, *parts):
    return {"type": kind, kind: [{"plain_text": part} for part in parts]}


@pytest.mark.parametrize(
    "prop,expected",
    [
        (text_prop("title", "Dune", " Messiah"), "Dune Messiah"),
        (text_prop("rich_text"), ""),
        ({"type": "select", "select": {"name": "Book"}}, "Book"),
        ({"type": "select", "select": None}, None),
        ({"type": "status", "status": {"name": "Done"}}, "Done"),
        ({"type": "multi_select", "multi_select": [{"name": "a"}, {"name": "b"}]}, ["a", "b"]),
        ({"type": "date", "date": {"start": "2024-01-02", "end": None}}, "2024-01-02"),
        ({"type": "date", "date": None}, None),
        ({"type": "number", "number": 4.5}, 4.5),
        ({"type": "url", "url": "https://x.test"}, "https://x.test"),
        ({"type": "checkbox", "checkbox": True}, True),
        ({"type": "people", "people": [{"id": "u1", "name": "Ana"}, {"id": "u2"}]}, ["Ana", "u2"]),
        ({"type": "relation", "relation": [{"id": "p1"}, {}]}, ["p1"]),
        ({"type": "formula", "formula": {"type": "number", "number": 3}}, 3),
        ({"type": "formula", "formula": {"type": "date", "date": {"start": "2024-05-01"}}}, "2024-05-01"),
        ({"type": "rollup", "rollup": {}}, None),
    ],
)
def test_get_property_value(prop, expected):
    assert props.get_property_value(prop) == expected


def test_build_text_is_capped():
    built = props.build_property_value("x" * 2500, "rich_text")
    assert built == {"rich_text": [{"text": {"content": "x" * 2000}}]}


def test_build_values():
    assert props.build_property_value("Book", "select") == {"select": {"name": "Book"}}
    assert props.build_property_value(None, "select") == {"select": None}
    assert props.build_property_value(["A, B", "C"], "multi_select") == {
        "multi_select": [{"name": "A  B"}, {"name": "C"}]
    }
    assert props.build_property_value("2024-01-02", "date") == {"date": {"start": "2024-01-02"}}
    assert props.build_property_value("", "number") == {"number": None}
    assert props.build_property_value("7", "number") == {"number": 7.0}
    assert props.build_property_value("", "url") == {"url": None}


def test_build_unknown_type_raises():
    with pytest.raises(ValueError):
        props.build_property_value("x", "rollup")


def test_resolve_property_exact_and_case_insensitive():
    mapping = {"synopsis": "Synopsys", "name": "Name"}
    schema = {"Name": {"type": "title"}, "synopsys ": {"type": "rich_text"}}

    assert props.resolve_property(schema, mapping, "name") == "Name"
    assert props.resolve_property(schema, mapping, "synopsis") == "synopsys "


def test_resolve_property_missing():
    schema = {"Name": {"type": "title"}}
    assert props.resolve_property(schema, {"synopsis": "Synopsys"}, "synopsis") is None
    assert props.resolve_property(schema, {}, "synopsis") is None


def test_resolve_property_without_schema_trusts_mapping():
    assert props.resolve_property(None, {"synopsis": "Synopsys"}, "synopsis") == "Synopsys"


def test_property_type_and_title():
    schema = {"Title": {"type": "title"}, "Tags": {"type": "multi_select"}}
    assert props.property_type(schema, "Tags", "select") == "multi_select"
    assert props.property_type(schema, "Other", "select") == "select"
    assert props.title_property(schema) == "Title"


def test_read_mapped_and_files():
    page = {
        "properties": {
            "Name": text_prop("title", "Heat"),
            "Thumbnail": {
                "type": "files",
                "files": [{"type": "external", "name": "t", "external": {"url": "https://img.test/a.jpg"}}],
            },
        }
    }

    values = props.read_mapped(page, {"name": "Name", "thumbnail": "Thumbnail", "url": "URL"})

    assert values["name"] == "Heat"
    assert "url" not in values
    assert props.first_file_url(values["thumbnail"]) == "https://img.test/a.jpg"
    assert props.page_title(page) == "Heat"


def test_file_builders():
    assert props.files_from_upload("up-1") == {"files": [{"type": "file_upload", "file_upload": {"id": "up-1"}}]}
    assert props.files_from_urls(["https://a", None]) == {
        "files": [{"type": "external", "name": "image-1", "external": {"url": "https://a"}}]
    }
