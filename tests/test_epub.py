import datetime as dt
import io
import zipfile

import pytest
from ebooklib import epub
from lxml import etree

from http_epub.content import extract_content
from http_epub.epub import ZIP_TIMESTAMP, build_epub, render_article
from http_epub.errors import AssemblyError
from http_epub.models import ContentNode, Document, ImageAsset

CREATED = dt.datetime(2024, 3, 1, 12, 30, tzinfo=dt.timezone.utc)


def document(**overrides) -> Document:
    values = dict(
        source_url="https://example.com/post",
        url="https://example.com/post",
        title="Hello",
        author="Ada Lovelace",
        language="en",
        identifier="urn:uuid:00000000-0000-0000-0000-000000000001",
        created=CREATED,
    )
    values.update(overrides)
    return Document(**values)


def paragraph(text: str) -> ContentNode:
    return ContentNode("article", children=[ContentNode("p", children=[ContentNode.text_node(text)])])


def png_asset(data: bytes, identifier: str = "image-001") -> ImageAsset:
    return ImageAsset(
        url=f"https://cdn.example.com/{identifier}.png",
        identifier=identifier,
        path=f"images/{identifier}.png",
        media_type="image/png",
        data=data,
        format="PNG",
    )


def open_epub(data: bytes) -> zipfile.ZipFile:
    return zipfile.ZipFile(io.BytesIO(data))


def read_xml(archive: zipfile.ZipFile, name: str):
    return etree.fromstring(archive.read(name))


def select(tree, path: str):
    """XPath over local names, e.g. ``select(tree, "//manifest/item")``."""
    steps = []
    for step in path.split("/"):
        if step in ("", "."):
            steps.append(step)
            continue
        name, _, predicate = step.partition("[")
        steps.append(f"*[local-name()='{name}']" + (f"[{predicate}" if predicate else ""))
    return tree.xpath("/".join(steps))


class TestContainer:
    def test_mimetype_is_first_and_stored(self):
        archive = open_epub(build_epub(document(), paragraph("Hello world"), []))
        first = archive.infolist()[0]
        assert first.filename == "mimetype"
        assert first.compress_type == zipfile.ZIP_STORED
        assert archive.read("mimetype") == b"application/epub+zip"

    def test_entries_carry_a_fixed_date(self):
        archive = open_epub(build_epub(document(), paragraph("Hello world"), []))
        assert {info.date_time for info in archive.infolist()} == {ZIP_TIMESTAMP}

    def test_container_points_at_package(self):
        archive = open_epub(build_epub(document(), paragraph("Hello world"), []))
        rootfile = select(read_xml(archive, "META-INF/container.xml"), "//rootfile")[0]
        assert rootfile.get("full-path") == "OEBPS/content.opf"

    def test_manifest_holds_content_and_navigation_documents(self):
        archive = open_epub(build_epub(document(), paragraph("Hello world"), []))
        package = read_xml(archive, "OEBPS/content.opf")
        items = {item.get("id"): item for item in select(package, "//manifest/item")}
        assert set(items) == {"article", "nav", "ncx"}
        assert items["article"].get("href") == "article.xhtml"
        assert items["nav"].get("properties") == "nav"
        assert [ref.get("idref") for ref in select(package, "//spine/itemref")] == ["article"]

    def test_metadata_reads_back(self, tmp_path):
        doc = document(published="2023-05-17", description="Summary")
        path = tmp_path / "book.epub"
        path.write_bytes(build_epub(doc, paragraph("Hello world"), []))
        book = epub.read_epub(str(path), {"ignore_ncx": True})

        def dc(name):
            return [value for value, _ in book.get_metadata("DC", name)]

        assert dc("identifier") == [doc.identifier]
        assert dc("title") == ["Hello"]
        assert dc("creator") == ["Ada Lovelace"]
        assert dc("language") == ["en"]
        assert dc("source") == ["https://example.com/post"]
        assert dc("date") == ["2023-05-17"]
        assert dc("description") == ["Summary"]

    def test_modified_timestamp_is_utc(self):
        created = dt.datetime(2024, 3, 1, 14, 30, tzinfo=dt.timezone(dt.timedelta(hours=2)))
        archive = open_epub(build_epub(document(created=created), paragraph("x"), []))
        package = read_xml(archive, "OEBPS/content.opf")
        modified = select(package, "//metadata/meta[@property='dcterms:modified']")[0]
        assert modified.text == "2024-03-01T12:30:00Z"

    def test_deterministic(self):
        first = build_epub(document(), paragraph("Hello world"), [])
        second = build_epub(document(), paragraph("Hello world"), [])
        assert first == second


class TestArticle:
    def test_hello_world_round_trip(self):
        markup = b"<html><body><article><p>Hello world</p></article></body></html>"
        extracted = extract_content(markup, "https://example.com/post")
        archive = open_epub(build_epub(document(), extracted.root, []))
        assert set(archive.namelist()) == {
            "mimetype",
            "META-INF/container.xml",
            "OEBPS/content.opf",
            "OEBPS/nav.xhtml",
            "OEBPS/toc.ncx",
            "OEBPS/article.xhtml",
        }
        article = read_xml(archive, "OEBPS/article.xhtml")
        assert [p.text for p in select(article, "//body/article/p")] == ["Hello world"]

    def test_source_header(self):
        archive = open_epub(build_epub(document(published="2023-05-17"), paragraph("x"), []))
        header = select(read_xml(archive, "OEBPS/article.xhtml"), "//body/header")[0]
        assert select(header, "./h1")[0].text == "Hello"
        assert select(header, "./p[@class='byline']")[0].text == "Ada Lovelace"
        link = select(header, "./p[@class='origin']/a")[0]
        assert link.get("href") == "https://example.com/post"
        assert link.text == "example.com"
        assert select(header, ".//time")[0].get("datetime") == "2023-05-17"

    def test_placeholder_author_has_no_byline(self):
        archive = open_epub(build_epub(document(author="http-epub"), paragraph("x"), []))
        article = read_xml(archive, "OEBPS/article.xhtml")
        assert select(article, "//header/p[@class='byline']") == []

    def test_mixed_text_and_tails(self):
        root = ContentNode(
            "div",
            children=[
                ContentNode.text_node("before "),
                ContentNode("em", children=[ContentNode.text_node("middle")]),
                ContentNode.text_node(" after"),
            ],
        )
        archive = open_epub(build_epub(document(), root, []))
        div = select(read_xml(archive, "OEBPS/article.xhtml"), "//body/div")[0]
        assert etree.tostring(div, method="text", encoding="unicode") == "before middle after"

    def test_table_cell_root_becomes_div(self):
        body = render_article(document(), ContentNode("td", children=[ContentNode.text_node("cell text")]))
        assert b"<td" not in body
        assert b"<div>cell text</div>" in body

    def test_empty_elements_survive_html_round_trip(self):
        root = ContentNode(
            "div",
            children=[ContentNode("a", {"id": "anchor"}), ContentNode("p", children=[ContentNode.text_node("after")])],
        )
        archive = open_epub(build_epub(document(), root, []))
        div = select(read_xml(archive, "OEBPS/article.xhtml"), "//body/div")[0]
        assert [etree.QName(child).localname for child in div] == ["a", "p"]

    def test_language_is_declared(self):
        archive = open_epub(build_epub(document(language="fr"), paragraph("x"), []))
        html = read_xml(archive, "OEBPS/article.xhtml")
        assert html.get("lang") == "fr"
        assert html.get("{http://www.w3.org/XML/1998/namespace}lang") == "fr"

    def test_nav_links_to_article(self):
        archive = open_epub(build_epub(document(), paragraph("x"), []))
        links = select(read_xml(archive, "OEBPS/nav.xhtml"), "//nav//a")
        assert [(a.get("href"), a.text) for a in links] == [("article.xhtml", "Hello")]


class TestImages:
    def test_images_are_packaged(self, png_bytes):
        asset = png_asset(png_bytes)
        root = paragraph("x")
        root.append(ContentNode("img", {"src": asset.path, "alt": ""}))
        archive = open_epub(build_epub(document(), root, [asset]))
        assert archive.read("OEBPS/images/image-001.png") == png_bytes
        item = select(read_xml(archive, "OEBPS/content.opf"), "//manifest/item[@id='image-001']")[0]
        assert item.get("href") == "images/image-001.png"
        assert item.get("media-type") == "image/png"
        assert item.get("properties") is None

    def test_cover_image(self, png_bytes):
        content, cover = png_asset(png_bytes), png_asset(png_bytes, "image-002")
        root = paragraph("x")
        root.append(ContentNode("img", {"src": content.path, "alt": ""}))
        archive = open_epub(build_epub(document(), root, [content, cover], cover=cover))
        package = read_xml(archive, "OEBPS/content.opf")
        item = select(package, "//manifest/item[@id='image-002']")[0]
        assert item.get("properties") == "cover-image"
        assert item.get("href") == "images/image-002.png"
        meta = select(package, "//metadata/meta[@name='cover']")[0]
        assert meta.get("content") == "image-002"
        assert archive.read("OEBPS/images/image-002.png") == png_bytes


class TestFailures:
    def test_empty_tree(self):
        with pytest.raises(AssemblyError) as excinfo:
            build_epub(document(), ContentNode("div"), [])
        assert excinfo.value.stage == "assemble"

    def test_image_only_tree_is_accepted(self, png_bytes):
        asset = png_asset(png_bytes)
        root = ContentNode("figure", children=[ContentNode("img", {"src": asset.path})])
        assert build_epub(document(), root, [asset])

    def test_empty_title(self):
        with pytest.raises(AssemblyError, match="title"):
            build_epub(document(title="  "), paragraph("x"), [])

    def test_unsanitized_tree_is_refused(self):
        root = paragraph("x")
        root.append(ContentNode("script", children=[ContentNode.text_node("alert(1)")]))
        root.children[0].attrs["onclick"] = "steal()"
        with pytest.raises(AssemblyError, match="unsanitized"):
            build_epub(document(), root, [])
