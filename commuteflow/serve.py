import eventlet
eventlet.monkey_patch()

import os

from commuteflow.main import create_app, socketio


def main():
    app = create_app({'SOCKETIO_ASYNC_MODE': 'eventlet'})
    socketio.run(app, host=os.environ.get('HOST', '0.0.0.0'), port=int(os.environ.get('PORT', 5000)))


if __name__ == '__main__':
    main()
