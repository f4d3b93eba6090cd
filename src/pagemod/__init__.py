"""Declarative page-modification plugins.

Plugins are JSON documents describing insert/update/delete/execute
operations. They are matched to pages by URL pattern, gated by a static
risk classifier, and applied to a document tree by the interpreter.
"""
