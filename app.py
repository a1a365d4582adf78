from flask import Flask, jsonify
from flask_cors import CORS
import atexit
import logging
from dotenv import load_dotenv
load_dotenv()  # 加载.env文件


from merge_pipeline.connections import ConnectionManager
from merge_pipeline.errors import HandleUnavailableError, TableNotFoundError
from merge_pipeline.scheduler import RefreshScheduler
from services.query_service import QueryService
from utils.config import Settings
from utils.constants import LIGHTHOUSE_GROUP, VISUAL_GROUP

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _unavailable(e):
    return jsonify({'error': str(e)}), 503


def _not_found(e):
    return jsonify({'error': str(e)}), 404


def _server_error(where):
    logger.error(f"Unexpected error in {where}", exc_info=True)
    return jsonify({'error': 'Internal server error'}), 500


def create_app(settings=None, manager=None, scheduler=None, start_scheduler=True):
    """
    Build the Flask app.
    The ConnectionManager is shared by the query routes (readers) and the
    RefreshScheduler (writer); pass your own to control both in tests.
    """
    settings = settings or Settings.from_env()
    manager = manager or ConnectionManager()
    scheduler = scheduler or RefreshScheduler(settings, manager)
    queries = QueryService(manager)

    app = Flask(__name__)
    # the dashboard is served from another origin
    CORS(app, resources={r"/api/*": {"origins": "*"}})
    app.config['SETTINGS'] = settings
    app.extensions['connection_manager'] = manager
    app.extensions['refresh_scheduler'] = scheduler

    @app.route('/api/health', methods=['GET'])
    def health():
        return jsonify({'status': 'ok'})

    @app.route('/api/lighthouse/data', methods=['GET'])
    @app.route('/api/data', methods=['GET'])
    def lighthouse_data():
        """Rows of the lighthouse results table, newest first. /api/data is the legacy path."""
        try:
            return jsonify(queries.table_rows(LIGHTHOUSE_GROUP, settings.lighthouse_table))
        except HandleUnavailableError as e:
            return _unavailable(e)
        except TableNotFoundError as e:
            return _not_found(e)
        except Exception:
            return _server_error('lighthouse_data')

    @app.route('/api/lighthouse/stats', methods=['GET'])
    def lighthouse_stats():
        try:
            return jsonify(queries.group_stats(LIGHTHOUSE_GROUP))
        except HandleUnavailableError as e:
            return _unavailable(e)
        except Exception:
            return _server_error('lighthouse_stats')

    @app.route('/api/visual/data', methods=['GET'])
    def visual_data():
        """Every table of the visual group, each ordered by timestamp or id when present."""
        try:
            return jsonify({'tables': queries.group_rows(VISUAL_GROUP)})
        except HandleUnavailableError as e:
            return _unavailable(e)
        except Exception:
            return _server_error('visual_data')

    @app.route('/api/visual/stats', methods=['GET'])
    def visual_stats():
        try:
            return jsonify(queries.group_stats(VISUAL_GROUP))
        except HandleUnavailableError as e:
            return _unavailable(e)
        except Exception:
            return _server_error('visual_stats')

    @app.route('/api/baseline/data', methods=['GET'])
    def baseline_data():
        try:
            return jsonify(queries.table_rows(VISUAL_GROUP, settings.baseline_table))
        except HandleUnavailableError as e:
            return _unavailable(e)
        except TableNotFoundError as e:
            return _not_found(e)
        except Exception:
            return _server_error('baseline_data')

    @app.route('/api/refresh', methods=['POST'])
    def refresh():
        """
        Run one refresh cycle now and report it.
        Response: {"success": bool, "lighthouse": bool, "visual": bool, "timestamp": "...", "details": {...}}
        """
        try:
            result = scheduler.run_cycle(blocking=True)
            return jsonify(result.to_dict())
        except Exception:
            return _server_error('refresh')

    if start_scheduler:
        try:
            scheduler.start(run_immediately=True)
            atexit.register(scheduler.shutdown)
        except Exception as e:
            logger.warning(f"Scheduler init failed: {e}")

    return app


if __name__ == "__main__":
    settings = Settings.from_env()
    logger.info(f"Starting with {settings.summary()}")
    app = create_app(settings)

    app.run(host="0.0.0.0", port=settings.port, debug=False, threaded=True)
