from src.domain.sanitize import content_disposition, sanitize_filename


def test_safe_characters_kept():
    assert sanitize_filename("Page-01_final.v2.png") == "Page-01_final.v2.png"


def test_unsafe_characters_replaced():
    assert sanitize_filename('a b/c\\d"e;f.png') == "a_b_c_d_e_f.png"


def test_non_ascii_replaced_per_character():
    assert sanitize_filename("ページ.png") == "___.png"


def test_content_disposition_download():
    assert content_disposition('my "file".pdf', download=True) == (
        'attachment; filename="my__file_.pdf"'
    )


def test_content_disposition_inline():
    assert content_disposition("a.png") == 'inline; filename="a.png"'


def test_content_disposition_empty_name():
    assert content_disposition("", download=True) == 'attachment; filename="file"'
