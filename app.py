import eventlet

eventlet.monkey_patch()

from socialchat import create_app  # noqa: E402

# ================== APP SETUP ==================

app = create_app()
socketio = app.extensions["socketio"]

if __name__ == "__main__":
    socketio.run(app, host=app.config["HOST"], port=app.config["PORT"], debug=app.config["DEBUG"])
