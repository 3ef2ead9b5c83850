from dataclasses import dataclass
from enum import IntEnum

import numpy as np

from arena import TileType, BLAST_OFFSETS
from events import BOMB_PLACED


class AgentAction(IntEnum):
    NONE = 0
    MOVE_UP = 1
    MOVE_DOWN = 2
    MOVE_LEFT = 3
    MOVE_RIGHT = 4
    BOMB_UP = 5
    BOMB_DOWN = 6
    BOMB_LEFT = 7
    BOMB_RIGHT = 8


NUM_ACTIONS = len(AgentAction)

# action -> ((dx, dy), places_bomb). Up is +y.
ACTION_EFFECTS = {
    AgentAction.NONE: ((0, 0), False),
    AgentAction.MOVE_UP: ((0, 1), False),
    AgentAction.MOVE_DOWN: ((0, -1), False),
    AgentAction.MOVE_LEFT: ((-1, 0), False),
    AgentAction.MOVE_RIGHT: ((1, 0), False),
    AgentAction.BOMB_UP: ((0, 1), True),
    AgentAction.BOMB_DOWN: ((0, -1), True),
    AgentAction.BOMB_LEFT: ((-1, 0), True),
    AgentAction.BOMB_RIGHT: ((1, 0), True),
}

# (move, bomb) pairs sharing a direction
DIRECTIONAL_ACTIONS = (
    (AgentAction.MOVE_UP, AgentAction.BOMB_UP),
    (AgentAction.MOVE_DOWN, AgentAction.BOMB_DOWN),
    (AgentAction.MOVE_LEFT, AgentAction.BOMB_LEFT),
    (AgentAction.MOVE_RIGHT, AgentAction.BOMB_RIGHT),
)

# Distance used when a grid holds no breakable wall at all
NO_WALL_DISTANCE = 32767

DEFAULT_BOMB_TIMER = 3


@dataclass
class RewardConfig:
    """Reward shaping values."""
    alive: float = -1.0               # staying alive without doing anything interesting
    effective_bomb: float = 5.0       # bomb placed next to a breakable wall
    ineffective_bomb: float = -5.0    # bomb placed with no breakable wall in reach
    break_wall: float = 20.0          # per wall destroyed
    death: float = -100.0             # caught in an explosion
    wall_approach: float = 5.0        # +/- for moving closer to / away from the nearest wall
    dodge: float = 10.0               # held ground on a cell one tick from exploding


class AgentState:
    """Immutable snapshot of what the agent sees; used as the Q-table key.

    Equality and hashing cover the position and every cell of both grids.
    The grids are private read-only copies, so later changes to the arena
    never leak into a stored state.
    """
    __slots__ = ("_position", "_tiles", "_danger", "_key", "_hash")

    def __init__(self, position, tiles, danger):
        tiles = np.array(tiles, dtype=np.int8, copy=True)
        danger = np.array(danger, dtype=np.int16, copy=True)
        if tiles.shape != danger.shape:
            raise ValueError(f"Tile grid {tiles.shape} and danger map {danger.shape} differ in shape")
        tiles.flags.writeable = False
        danger.flags.writeable = False

        position = (int(position[0]), int(position[1]))
        object.__setattr__(self, "_position", position)
        object.__setattr__(self, "_tiles", tiles)
        object.__setattr__(self, "_danger", danger)
        key = (position, tiles.shape, tiles.tobytes(), danger.tobytes())
        object.__setattr__(self, "_key", key)
        object.__setattr__(self, "_hash", hash(key))

    def __setattr__(self, name, value):
        raise AttributeError("AgentState is immutable")

    @property
    def position(self):
        return self._position

    @property
    def tiles(self):
        return self._tiles

    @property
    def danger(self):
        return self._danger

    @property
    def shape(self):
        return self._tiles.shape

    def tile_at(self, position):
        x, y = position
        if not (0 <= x < self._tiles.shape[0] and 0 <= y < self._tiles.shape[1]):
            return TileType.UNBREAKABLE
        return TileType(int(self._tiles[x, y]))

    def danger_at(self, position):
        x, y = position
        if not (0 <= x < self._danger.shape[0] and 0 <= y < self._danger.shape[1]):
            return 0
        return int(self._danger[x, y])

    def __eq__(self, other):
        if not isinstance(other, AgentState):
            return NotImplemented
        return self._hash == other._hash and self._key == other._key

    def __hash__(self):
        return self._hash

    def __repr__(self):
        return f"AgentState(pos={self._position}, size={self._tiles.shape})"


def nearest_breakable_distance(state):
    """Manhattan distance from the state's position to the closest breakable wall."""
    walls = np.argwhere(state.tiles == TileType.BREAKABLE)
    if len(walls) == 0:
        return NO_WALL_DISTANCE
    x, y = state.position
    return int(np.min(np.abs(walls[:, 0] - x) + np.abs(walls[:, 1] - y)))


def compute_reward(state, action, next_state, delta, broken_walls, rewards):
    """Computes the reward for a state-action-state transition.

    Args:
        state (AgentState): State before the action.
        action (AgentAction): Action taken.
        next_state (AgentState): State after the action and the bomb tick.
        delta (tuple): (dx, dy) direction of the action.
        broken_walls (int): Walls destroyed during the tick.
        rewards (RewardConfig): Reward values.

    Returns:
        float: The shaped reward.
    """
    # Death by explosion overrides everything
    if next_state.tile_at(next_state.position) == TileType.EXPLOSION:
        return rewards.death

    reward = rewards.alive + broken_walls * rewards.break_wall

    _, places_bomb = ACTION_EFFECTS[AgentAction(action)]
    if places_bomb:
        bomb_x = next_state.position[0] + delta[0]
        bomb_y = next_state.position[1] + delta[1]
        next_to_wall = any(
            next_state.tile_at((bomb_x + dx, bomb_y + dy)) == TileType.BREAKABLE
            for dx, dy in BLAST_OFFSETS
        )
        reward += rewards.effective_bomb if next_to_wall else rewards.ineffective_bomb
    elif action != AgentAction.NONE:
        old_distance = nearest_breakable_distance(state)
        new_distance = nearest_breakable_distance(next_state)
        if new_distance < old_distance:
            reward += rewards.wall_approach
        elif new_distance > old_distance:
            reward -= rewards.wall_approach

        # NOTE: a legal move always changes the position, so this bonus does not fire in practice
        if state.danger_at(state.position) == 1 and state.position == next_state.position:
            reward += rewards.dodge
    else:
        reward = rewards.alive

    return reward


class Actor:
    def __init__(self, world, position=None, bomb_timer=DEFAULT_BOMB_TIMER, rewards=None):
        '''Bind the actor to an arena. Position defaults to the arena spawn.'''
        if bomb_timer < 1:
            raise ValueError(f"Bomb timer must be at least 1, got {bomb_timer}")
        self.world = world
        self.bomb_timer = int(bomb_timer)
        self.rewards = rewards if rewards is not None else RewardConfig()
        self.position = tuple(position) if position is not None else tuple(world.spawn)
        self.cooldown = 0

    def reset(self, position=None):
        self.position = tuple(position) if position is not None else tuple(self.world.spawn)
        self.cooldown = 0

    def _can_move(self, delta):
        target = (self.position[0] + delta[0], self.position[1] + delta[1])
        return self.world.get_tile_type(target) == TileType.WALKABLE

    def legal_actions(self):
        """Returns the legal actions in ordinal order. NONE is always legal."""
        legal = [AgentAction.NONE]
        bombs = []
        for move_action, bomb_action in DIRECTIONAL_ACTIONS:
            delta, _ = ACTION_EFFECTS[move_action]
            if not self._can_move(delta):
                continue
            legal.append(move_action)
            # one outstanding bomb at a time
            if self.cooldown == 0:
                bombs.append(bomb_action)
        return legal + bombs

    def danger_map(self):
        danger = np.zeros(self.world.size, dtype=np.int16)
        for bomb_position, timer in self.world.armed_bombs():
            for x, y in self.world.blast_footprint(bomb_position):
                # soonest explosion wins where blasts overlap
                if danger[x, y] == 0 or timer < danger[x, y]:
                    danger[x, y] = timer
        return danger

    def snapshot(self):
        return AgentState(self.position, self.world.tiles, self.danger_map())

    def _tick_cooldown(self):
        self.cooldown = max(0, self.cooldown - 1)

    def execute(self, action):
        """Takes an action against the arena.

        Returns:
            tuple: (next_state, reward)
        """
        action = AgentAction(action)
        self.world.clear_explosions()
        state = self.snapshot()

        delta, places_bomb = ACTION_EFFECTS[action]
        if places_bomb:
            # bombs already due go off before the new one is armed
            broken_walls = self.world.step_bombs()
            self._tick_cooldown()
            self.cooldown = self.bomb_timer

            bomb_position = (self.position[0] + delta[0], self.position[1] + delta[1])
            self.world.arm_bomb(bomb_position, self.bomb_timer)
            self.world.events.publish(BOMB_PLACED, bomb_position, self.bomb_timer)
        else:
            self.position = (self.position[0] + delta[0], self.position[1] + delta[1])
            broken_walls = self.world.step_bombs()
            self._tick_cooldown()

        next_state = self.snapshot()
        reward = compute_reward(state, action, next_state, delta, broken_walls, self.rewards)
        return next_state, reward
