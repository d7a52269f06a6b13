import pytest

from garbanzo.pagecache import PageCache, TemplateNotFoundError, first_letter


@pytest.fixture
def templates(tmp_path):
    (tmp_path / "pages").mkdir()
    (tmp_path / "fragments").mkdir()
    (tmp_path / "base.html").write_text(
        "<html>{% block content %}{% endblock %}</html>"
    )
    (tmp_path / "pages" / "home.html").write_text(
        '{% extends "base.html" %}{% block content %}Hi {{ data.name }}'
        '{% include "fragments/badge.html" %}{% endblock %}'
    )
    (tmp_path / "fragments" / "badge.html").write_text(
        "<b>{{ first_letter(data.name) }}</b>"
    )
    (tmp_path / "fragments" / "plain.html").write_text("[{{ name }}]")
    return tmp_path


def test_first_letter():
    assert first_letter("") == ""
    assert first_letter("garbanzo") == "G"
    assert first_letter("Z") == "Z"


def test_render_page_uses_base_and_fragments(templates):
    pc = PageCache(templates)
    response = pc.render("home.html", {"name": "bob"})
    assert response.body == b"<html>Hi bob<b>B</b></html>"
    assert response.status_code == 200


def test_fragment_string(templates):
    pc = PageCache(templates)
    assert pc.fragment_string("badge.html", {"name": "alice"}) == "<b>A</b>"


def test_mapping_keys_are_top_level(templates):
    pc = PageCache(templates)
    assert pc.fragment_string("plain.html", {"name": "pod"}) == "[pod]"


def test_object_data_is_available(templates):
    class Thing:
        name = "xavier"

    pc = PageCache(templates)
    assert pc.fragment_string("badge.html", Thing()) == "<b>X</b>"


def test_render_fragment_response(templates):
    pc = PageCache(templates)
    response = pc.render_fragment("badge.html", {"name": "carl"})
    assert response.body == b"<b>C</b>"


def test_output_is_escaped(templates):
    pc = PageCache(templates)
    text = pc.fragment_string("plain.html", {"name": "<script>"})
    assert "<script>" not in text
    assert "&lt;script&gt;" in text


def test_unknown_template(templates):
    pc = PageCache(templates)
    with pytest.raises(TemplateNotFoundError):
        pc.fragment_string("missing.html", None)
    with pytest.raises(TemplateNotFoundError):
        pc.render("missing.html", None)


def test_fragment_is_not_a_page(templates):
    pc = PageCache(templates)
    with pytest.raises(TemplateNotFoundError):
        pc.render("badge.html", {"name": "a"})


def test_pages_need_base(tmp_path):
    (tmp_path / "pages").mkdir()
    (tmp_path / "pages" / "home.html").write_text("hello")
    with pytest.raises(TemplateNotFoundError):
        PageCache(tmp_path)


def test_empty_root_has_no_templates(tmp_path):
    pc = PageCache(tmp_path)
    with pytest.raises(TemplateNotFoundError):
        pc.fragment_string("message.html", None)