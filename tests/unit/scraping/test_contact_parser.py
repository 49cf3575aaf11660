from src.scraping.parser.contact_parser import ContactParser


def test_extract_from_contact_page(contact_page_html):
    info = ContactParser(contact_page_html, "https://acme-widgets.com/contact").extract()

    assert info.emails == ["hello@acme-widgets.com"]
    assert info.phones == ["+15551234567"]
    assert info.addresses == ["1200 Harbor Boulevard, Suite 300"]


def test_emails_from_text_are_lowercased_and_deduplicated():
    html = "<html><body><p>Sales@AcmeCorp.com or sales@acmecorp.com</p></body></html>"
    parser = ContactParser(html, "https://acmecorp.com")

    assert parser.extract_emails() == ["sales@acmecorp.com"]


def test_image_filenames_are_not_emails():
    html = '<html><body><p>logo@2x.png</p><a href="mailto:team@acmecorp.com">x</a></body></html>'
    parser = ContactParser(html, "https://acmecorp.com")

    assert parser.extract_emails() == ["team@acmecorp.com"]


def test_phone_formats_are_deduplicated():
    html = """
    <html><body>
    <p>Call (555) 987-6543 or 555.987.6543</p>
    <p>Fax: +1 555 111 2222</p>
    </body></html>
    """
    phones = ContactParser(html, "https://acmecorp.com").extract_phones()

    assert phones == ["(555) 987-6543", "+1 555 111 2222"]


def test_social_links_first_per_platform():
    html = """
    <html><body>
    <a href="https://www.facebook.com/sharer/sharer.php?u=x">Share</a>
    <a href="https://www.facebook.com/acmecorp">Facebook</a>
    <a href="https://x.com/acmecorp">X</a>
    <a href="https://www.instagram.com/acme.corp">Instagram</a>
    <a href="https://www.youtube.com/@acmecorp">YouTube</a>
    <a href="https://github.com/acmecorp">GitHub</a>
    <a href="https://www.linkedin.com/in/jane-doe">Jane</a>
    <a href="https://www.linkedin.com/company/acmecorp">Company</a>
    </body></html>
    """
    links = ContactParser(html, "https://acmecorp.com").extract_social_links()

    assert links == {
        "facebook": "https://www.facebook.com/acmecorp",
        "twitter": "https://x.com/acmecorp",
        "instagram": "https://www.instagram.com/acme.corp",
        "youtube": "https://www.youtube.com/@acmecorp",
        "github": "https://github.com/acmecorp",
        "linkedin": "https://www.linkedin.com/in/jane-doe",
    }


def test_malformed_href_does_not_hide_social_links():
    html = """
    <html><body>
    <a href="http://[broken">Broken</a>
    <a href="https://www.facebook.com/acmecorp">Facebook</a>
    </body></html>
    """
    links = ContactParser(html, "https://acmecorp.com").extract_social_links()

    assert links == {"facebook": "https://www.facebook.com/acmecorp"}


def test_page_without_contacts():
    info = ContactParser("<html><body><p>Nothing here</p></body></html>", "https://acmecorp.com").extract()

    assert info.emails == []
    assert info.phones == []
    assert info.addresses == []
    assert info.social_links == {}
