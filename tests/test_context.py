from src.vtop.context import extract_dashboard_context
from src.vtop.models import SessionContext
from tests.conftest import load_fixture


def test_script_variables_win():
    context = extract_dashboard_context(load_fixture("dashboard.html"))
    assert context == SessionContext(
        csrf_name="_csrf", csrf_value="dash-csrf-token", authorized_id="21BCE1234"
    )


def test_hidden_inputs_are_the_fallback():
    page = """
      <input type="hidden" name="_csrf" value="input-csrf"/>
      <input type="hidden" name="authorizedID" value="22MIS0042"/>
    """
    context = extract_dashboard_context(page)
    assert context.csrf_value == "input-csrf"
    assert context.authorized_id == "22MIS0042"
    assert context.csrf_name == "_csrf"


def test_custom_csrf_name_and_authorized_id_variable():
    page = """<script>
      var csrfName = 'X-CSRF';
      var csrfValue = 'abc';
      var authorizedID = '20BCE0001';
    </script>"""
    context = extract_dashboard_context(page)
    assert (context.csrf_name, context.csrf_value, context.authorized_id) == (
        "X-CSRF",
        "abc",
        "20BCE0001",
    )


def test_missing_pieces_return_none():
    assert extract_dashboard_context("") is None
    assert extract_dashboard_context(None) is None
    assert extract_dashboard_context("<script>var csrfValue = 'abc';</script>") is None
    assert extract_dashboard_context("<script>var id = '21BCE1234';</script>") is None
