"""Quote drafts blueprint - JSON adapter over the draft engine."""
import uuid
from typing import Any, Dict

from flask import Blueprint, current_app, g, jsonify, request, session

from fieldops.exceptions import FieldOpsError, ValidationError
from fieldops.services.draft_registry import DraftRegistry, DraftWorkspace
from fieldops.utils.number_format import parse_unit_price

quote_drafts_bp = Blueprint('quote_drafts', __name__, url_prefix='/drafts/quotes')


def get_registry() -> DraftRegistry:
    return current_app.extensions['draft_registry']


def get_json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def require_fields(data: Dict[str, Any], *names: str) -> None:
    missing = [name for name in names if not data.get(name)]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}")


def get_tax_rate():
    raw = request.args.get('tax_rate')
    if raw is None:
        return current_app.config.get('DEFAULT_TAX_RATE', 0)
    return parse_unit_price(raw)


def get_workspace(quote_id: str) -> DraftWorkspace:
    workspace = get_registry().get(g.draft_owner, quote_id)
    workspace.notifier.clear()
    return workspace


def state_response(workspace: DraftWorkspace, status_code: int = 200):
    return jsonify({'status': 'ok', **workspace.to_state(get_tax_rate())}), status_code


@quote_drafts_bp.before_request
def load_draft_owner():
    """Every browser session owns its own set of open drafts."""
    if 'draft_owner' not in session:
        session['draft_owner'] = str(uuid.uuid4())
    g.draft_owner = session['draft_owner']


# ----------------------------------------------------------------------
# Quote lifecycle
# ----------------------------------------------------------------------

@quote_drafts_bp.route('', methods=['POST'])
def create_draft():
    """Create a quote for a deal and open it for editing."""
    data = get_json_body()
    require_fields(data, 'company_id', 'deal_id')

    workspace = get_registry().create(
        g.draft_owner,
        company_id=str(data['company_id']),
        deal_id=str(data['deal_id']),
        is_archived=bool(data.get('is_archived', False)),
    )
    if workspace is None:
        raise FieldOpsError('A quote is already being created for this session.', status_code=409)

    return state_response(workspace, 201)


@quote_drafts_bp.route('/<quote_id>/open', methods=['POST'])
def open_draft(quote_id):
    data = get_json_body()
    require_fields(data, 'company_id', 'deal_id')

    workspace = get_registry().open(
        g.draft_owner,
        company_id=str(data['company_id']),
        deal_id=str(data['deal_id']),
        quote_id=quote_id,
        is_archived=bool(data.get('is_archived', False)),
    )
    return state_response(workspace)


@quote_drafts_bp.route('/<quote_id>', methods=['GET'])
def get_draft(quote_id):
    return state_response(get_workspace(quote_id))


@quote_drafts_bp.route('/<quote_id>', methods=['PATCH'])
def update_draft(quote_id):
    """Edit quote metadata (number, messages) and/or request a status change."""
    workspace = get_workspace(quote_id)
    data = get_json_body()

    for field in ('quote_number', 'client_message', 'disclaimer'):
        if field in data:
            workspace.store.edit_quote_field(field, str(data[field] or ''))

    if 'status' in data:
        workspace.store.set_status(data['status'])

    return state_response(workspace)


@quote_drafts_bp.route('/<quote_id>/save', methods=['POST'])
def save_draft(quote_id):
    workspace = get_workspace(quote_id)
    saved = workspace.store.save()
    if saved is not None:
        workspace.sync_change_orders()
    return state_response(workspace, 200 if saved is not None else 502)


@quote_drafts_bp.route('/<quote_id>/send', methods=['POST'])
def send_draft(quote_id):
    """Mark a draft as sent and persist it in one step."""
    workspace = get_workspace(quote_id)
    saved = workspace.store.send()
    return state_response(workspace, 200 if saved is not None else 502)


@quote_drafts_bp.route('/<quote_id>/accept', methods=['POST'])
def accept_draft(quote_id):
    """Accept the proposal without a customer signature."""
    workspace = get_workspace(quote_id)
    workspace.store.accept_without_signature()
    if workspace.store.accept_error is None:
        workspace.board.refresh_invoice()
        workspace.sync_change_orders()
    return state_response(workspace, 200 if workspace.store.accept_error is None else 502)


@quote_drafts_bp.route('/<quote_id>', methods=['DELETE'])
def delete_draft(quote_id):
    workspace = get_workspace(quote_id)
    if not workspace.store.delete_quote():
        return state_response(workspace, 502)

    get_registry().close(g.draft_owner, quote_id)
    return jsonify({'status': 'ok', 'deleted': quote_id})


@quote_drafts_bp.route('/<quote_id>/close', methods=['POST'])
def close_draft(quote_id):
    get_registry().close(g.draft_owner, quote_id)
    return jsonify({'status': 'ok'})


# ----------------------------------------------------------------------
# Line items
# ----------------------------------------------------------------------

@quote_drafts_bp.route('/<quote_id>/line-items', methods=['POST'])
def add_line_item(quote_id):
    workspace = get_workspace(quote_id)
    data = get_json_body()
    workspace.store.add_line_item(is_discount=bool(data.get('is_discount', False)))
    return state_response(workspace, 201)


@quote_drafts_bp.route('/<quote_id>/line-items/<client_id>', methods=['PATCH'])
def edit_line_item(quote_id, client_id):
    workspace = get_workspace(quote_id)
    if workspace.store.find_line_item(client_id) is None:
        raise ValidationError(f'Unknown line item {client_id}')

    data = get_json_body()
    if data.get('template_id'):
        workspace.store.apply_template(client_id, str(data['template_id']))
    for field in ('name', 'description'):
        if field in data:
            workspace.store.edit_field(client_id, field, str(data[field] or ''))
    if 'unit_price' in data:
        workspace.store.edit_price(client_id, str(data['unit_price'] if data['unit_price'] is not None else ''))

    return state_response(workspace)


@quote_drafts_bp.route('/<quote_id>/line-items/<client_id>', methods=['DELETE'])
def delete_line_item(quote_id, client_id):
    workspace = get_workspace(quote_id)
    workspace.store.delete_line_item(client_id)
    return state_response(workspace)


@quote_drafts_bp.route('/<quote_id>/line-items/<client_id>/toggle-edit', methods=['POST'])
def toggle_line_item_edit(quote_id, client_id):
    workspace = get_workspace(quote_id)
    workspace.store.toggle_line_item_edit(client_id)
    return state_response(workspace)


# ----------------------------------------------------------------------
# Change orders
# ----------------------------------------------------------------------

@quote_drafts_bp.route('/<quote_id>/change-orders', methods=['GET'])
def list_change_orders(quote_id):
    workspace = get_workspace(quote_id)
    workspace.reload_change_orders()
    return state_response(workspace)


@quote_drafts_bp.route('/<quote_id>/change-orders/form', methods=['PATCH'])
def update_change_order_form(quote_id):
    """Drive the item form: open/close, pick an item or template, type values."""
    workspace = get_workspace(quote_id)
    manager = workspace.manager
    data = get_json_body()

    if data.get('show') is True:
        manager.open_form()
    elif data.get('show') is False:
        manager.close_form()

    if data.get('editing_item_id'):
        manager.edit_item(str(data['editing_item_id']))
    if data.get('template_id'):
        manager.apply_template(str(data['template_id']), workspace.store.product_templates)

    manager.update_form(
        name=data.get('name'),
        description=data.get('description'),
        unit_price=str(data['unit_price']) if data.get('unit_price') is not None else None,
    )
    return state_response(workspace)


@quote_drafts_bp.route('/<quote_id>/change-orders/items', methods=['POST'])
def save_change_order_item(quote_id):
    """Add the form's item (or update the one being edited) and persist the draft."""
    workspace = get_workspace(quote_id)
    manager = workspace.manager
    data = get_json_body()

    if data.get('editing_item_id'):
        manager.edit_item(str(data['editing_item_id']))
    manager.update_form(
        name=data.get('name'),
        description=data.get('description'),
        unit_price=str(data['unit_price']) if data.get('unit_price') is not None else None,
    )

    saved = manager.add_or_edit_item()
    workspace.sync_change_orders()
    return state_response(workspace, 200 if saved is not None else 400)


@quote_drafts_bp.route('/<quote_id>/change-orders/items/<item_id>', methods=['DELETE'])
def delete_change_order_item(quote_id, item_id):
    workspace = get_workspace(quote_id)
    deleted = workspace.manager.delete_item(item_id)
    workspace.sync_change_orders()
    return state_response(workspace, 200 if deleted else 400)


@quote_drafts_bp.route('/<quote_id>/change-orders/draft/accept', methods=['POST'])
def accept_change_order_draft(quote_id):
    workspace = get_workspace(quote_id)
    saved = workspace.manager.accept_draft(workspace.board.quote_invoice)
    if saved is not None:
        workspace.board.refresh_invoice()
    workspace.sync_change_orders()
    return state_response(workspace, 200 if saved is not None else 409)


@quote_drafts_bp.route('/<quote_id>/change-orders/<change_order_id>/accept', methods=['POST'])
def accept_change_order(quote_id, change_order_id):
    workspace = get_workspace(quote_id)
    saved = workspace.board.accept_existing(change_order_id)
    workspace.sync_change_orders()
    return state_response(workspace, 200 if saved is not None else 409)


@quote_drafts_bp.route('/<quote_id>/change-orders/<change_order_id>', methods=['DELETE'])
def delete_change_order(quote_id, change_order_id):
    workspace = get_workspace(quote_id)
    deleted = workspace.board.delete_pending(change_order_id)
    workspace.sync_change_orders()
    return state_response(workspace, 200 if deleted else 409)
