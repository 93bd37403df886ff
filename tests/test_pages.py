from mediashare.web.pages import render_error_page, render_folder_page


def test_folder_named_like_a_placeholder_is_rendered_literally() -> None:
    page = render_folder_page("__MEDIASHARE_ITEMS__", [], show_gallery=False)

    assert page.count("Empty folder") == 1
    assert "<h1>__MEDIASHARE_ITEMS__</h1>" in page
    assert "__MEDIASHARE_TITLE__" not in page


def test_error_message_is_not_expanded() -> None:
    page = render_error_page("Missing __MEDIASHARE_TITLE__", title="Not found")

    assert "Missing __MEDIASHARE_TITLE__" in page
    assert "Not found" in page
