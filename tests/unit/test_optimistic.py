"""
Unit tests for OptimisticUpdate.
"""

import pytest

from fieldops.exceptions import PersistenceError
from fieldops.services.optimistic import OptimisticUpdate


class Editor:
    def __init__(self):
        self.items = ('a',)
        self.show_form = True


class TestOptimisticUpdate:
    """Tests for apply/request/restore."""

    def test_success_keeps_local_change(self):
        editor = Editor()
        seen = []

        def apply():
            editor.items = ('a', 'b')

        result = OptimisticUpdate(editor, ('items',), apply=apply, request=lambda: 'saved').run(on_success=seen.append)

        assert result == 'saved'
        assert editor.items == ('a', 'b')
        assert seen == ['saved']

    def test_rejection_restores_snapshot(self):
        editor = Editor()
        errors = []

        def apply():
            editor.items = ()
            editor.show_form = False

        def request():
            raise PersistenceError('nope')

        update = OptimisticUpdate(editor, ('items', 'show_form'), apply=apply, request=request)
        assert update.run(on_failure=errors.append) is None

        assert editor.items == ('a',)
        assert editor.show_form is True
        assert update.rolled_back
        assert errors[0].message == 'nope'

    def test_unexpected_error_restores_and_propagates(self):
        editor = Editor()

        def apply():
            editor.items = ()

        def request():
            raise KeyError('bug')

        with pytest.raises(KeyError):
            OptimisticUpdate(editor, ('items',), apply=apply, request=request).run()

        assert editor.items == ('a',)
