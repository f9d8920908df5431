"""Flask application factory."""
import logging
import os

from flask import Flask, jsonify, request


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    if not app.config.get('TESTING'):
        logging.basicConfig(
            level=logging.DEBUG if app.config.get('DEBUG') else logging.INFO,
            format='%(asctime)s %(levelname)s %(name)s: %(message)s'
        )

    # Sentry error tracking in production
    if os.getenv('SENTRY_DSN') and (app.config.get('ENV') == 'production' or os.getenv('FLASK_ENV') == 'production'):
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=os.getenv('SENTRY_DSN'),
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,
            environment=os.getenv('FLASK_ENV', 'production'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Redis cache for the template catalog and invoice lookups
    from fieldops.services.cache_service import init_cache
    cache = init_cache(app)

    # Remote store client and the open-draft registry
    from fieldops.services.store_client import StoreClient
    from fieldops.services.draft_registry import DraftRegistry
    store_client = StoreClient.from_config(app.config, cache=cache)
    app.extensions['store_client'] = store_client
    app.extensions['draft_registry'] = DraftRegistry.from_config(app.config, store_client)

    # Prometheus metrics instrumentation
    from fieldops.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Production: trust the reverse proxy headers
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=0)

    # Error Handlers
    from fieldops.exceptions import FieldOpsError

    @app.errorhandler(FieldOpsError)
    def handle_fieldops_error(error):
        """Handle custom application exceptions."""
        app.logger.error(f"FieldOpsError [{error.status_code}]: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({'status': 'error', 'message': 'Not Found'}), 404

    @app.errorhandler(405)
    def method_not_allowed_error(error):
        return jsonify({'status': 'error', 'message': 'Method Not Allowed'}), 405

    @app.errorhandler(500)
    def internal_error(error):
        app.logger.error(f"Unhandled Exception on {request.path}: {error}")
        return jsonify({'status': 'error', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from fieldops.blueprints.quote_drafts import quote_drafts_bp
    from fieldops.blueprints.metrics import metrics_bp

    app.register_blueprint(quote_drafts_bp)
    app.register_blueprint(metrics_bp)

    @app.route('/health')
    def health():
        cache_ok = cache.is_available()
        return jsonify({'status': 'ok', 'cache': 'up' if cache_ok else 'down'})

    # Register CLI commands
    from fieldops.cli_commands import init_cli_commands
    init_cli_commands(app)

    return app
