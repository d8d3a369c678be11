"""
Documents module.

Markdown documents owned by one user, shared with active collaborators
through email invitations, annotated with threaded comments. Suggestion
comments carry a replacement for an anchored character range; only the
owner can approve (splice into the content) or reject them.
"""
