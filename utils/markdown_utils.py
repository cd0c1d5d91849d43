import logging

import markdown
from markdown.extensions import Extension
from markdown.treeprocessors import Treeprocessor
from xml.etree.ElementTree import Element


logger = logging.getLogger(__name__)


class PostBodyProcessor(Treeprocessor):
    def run(self, root):
        """Post-process the element tree of a rendered post body"""
        self.harden_links(root)
        self.wrap_tables(root)

    def harden_links(self, root):
        """Open user links in a new tab and keep them out of search ranking."""
        for link in root.iter("a"):
            href = link.get("href", "")
            if href.lower().startswith("javascript:"):
                logger.warning("Dropping javascript link from post body")
                link.set("href", "#")
            link.set("rel", "nofollow noopener noreferrer")
            link.set("target", "_blank")

    def wrap_tables(self, root):
        """Wrap <table> elements inside <figure> so wide tables can scroll."""
        tables = list(root.iter("table"))
        for table in tables:
            parent = self.find_parent(root, table)
            if parent is None:
                continue
            index = list(parent).index(table)
            parent.remove(table)
            figure = Element("figure", {"class": "table-container"})
            figure.append(table)
            parent.insert(index, figure)

    def find_parent(self, root, child):
        """Finds the parent of an element."""
        for parent in root.iter():
            if child in list(parent):
                return parent
        return None


class PostBodyExtension(Extension):
    def extendMarkdown(self, md):
        # Raw HTML in a post is shown as text, never passed through
        md.preprocessors.deregister("html_block")
        md.inlinePatterns.deregister("html")
        md.treeprocessors.register(PostBodyProcessor(md), "post_body", 15)


def convert_markdown(md_text: str) -> str:
    """Convert a post body written in Markdown to HTML."""
    extensions = [
        "tables",
        "fenced_code",
        "sane_lists",
        PostBodyExtension(),
    ]
    return markdown.markdown(md_text or "", extensions=extensions)
