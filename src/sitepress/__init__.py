"""sitepress: content reconciliation and static publishing pipeline.

Markdown documents under configured content sources are reconciled into
a content store (only real changes are written), and the publish
pipeline regenerates pre-rendered pages, sitemap, robots policy, the
crawler manifest, copied assets and aggregated analytics from that store.
"""

__version__ = "0.1.0"
