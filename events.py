from collections import defaultdict

# Event names published on an EventChannel
ENVIRONMENT_GENERATED = "environment_generated"  # ()
WALL_BROKEN = "wall_broken"                      # (position)
BOMBS_STEPPED = "bombs_stepped"                  # ()
BOMB_PLACED = "bomb_placed"                      # (position, timer)
EPISODE_STEPPED = "episode_stepped"              # (stats)
LEARNING_CHANGED = "learning_changed"            # (learning)


class EventChannel:
    """Synchronous publish/subscribe channel.

    Listeners are called in subscription order inside ``publish``; nothing is
    queued. Exceptions raised by a listener propagate to the publisher.
    """

    def __init__(self):
        self._listeners = defaultdict(list)

    def subscribe(self, event, callback):
        self._listeners[event].append(callback)
        return callback

    def unsubscribe(self, event, callback):
        listeners = self._listeners.get(event)
        if listeners and callback in listeners:
            listeners.remove(callback)

    def publish(self, event, *args):
        # copy so a listener may unsubscribe itself while being notified
        for callback in list(self._listeners.get(event, ())):
            callback(*args)

    def listener_count(self, event):
        return len(self._listeners.get(event, ()))
