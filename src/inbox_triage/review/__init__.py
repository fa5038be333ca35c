"""
Review package: swipe verdicts with undo, review sessions and corrections.
"""
