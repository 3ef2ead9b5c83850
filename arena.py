from enum import IntEnum

import numpy as np

from events import EventChannel, ENVIRONMENT_GENERATED, WALL_BROKEN, BOMBS_STEPPED


class TileType(IntEnum):
    WALKABLE = 0
    UNBREAKABLE = 1
    BREAKABLE = 2
    EXPLOSION = 3


class WallPattern(IntEnum):
    SPLIT = 0
    GRID = 1
    BORDER = 2


# Center first, then up, down, right, left. Up is +y.
BLAST_OFFSETS = ((0, 0), (0, 1), (0, -1), (1, 0), (-1, 0))

DEFAULT_SIZE = (6, 6)


class GridWorld:

    def __init__(self, width=DEFAULT_SIZE[0], height=DEFAULT_SIZE[1], pattern=WallPattern.SPLIT,
                 events=None, verbose=False):
        '''Initialize the arena and generate the first board.'''
        self.verbose = verbose
        self.events = events if events is not None else EventChannel()

        self._check_size(width, height)
        self.width = int(width)
        self.height = int(height)
        self.pattern = WallPattern(pattern)

        self.tiles = None
        self.bomb_timers = None
        self.breakable_wall_count = 0
        self.initial_wall_count = 0
        self.spawn = (0, 0)
        self.generate()

    @staticmethod
    def _check_size(width, height):
        if int(width) <= 0 or int(height) <= 0:
            raise ValueError(f"Arena size must be positive, got {width}x{height}")

    @property
    def size(self):
        return (self.width, self.height)

    def in_bounds(self, position):
        x, y = position
        return 0 <= x < self.width and 0 <= y < self.height

    def _can_spawn_breakable(self, x, y, pattern):
        if pattern == WallPattern.SPLIT:
            on_left = x < self.width // 2
            on_bottom = y < self.height // 2
            return on_left != on_bottom
        if pattern == WallPattern.BORDER:
            return x == 0 or x == self.width - 1 or y == 0 or y == self.height - 1
        if pattern == WallPattern.GRID:
            if y == 0:
                return False
            return x % 2 == 0 and y % 2 == 1
        return False

    def _spawn_position(self, pattern):
        if pattern == WallPattern.BORDER:
            return (self.width // 2, self.height // 2)
        return (0, 0)

    def generate(self, width=None, height=None, pattern=None):
        """Rebuild both grids and lay out breakable walls.

        Args:
            width (int): New width, or None to keep the current one.
            height (int): New height, or None to keep the current one.
            pattern (WallPattern): New wall pattern, or None to keep the current one.

        Returns:
            tuple: The (x, y) spawn position for the agent.
        """
        if width is not None or height is not None:
            width = self.width if width is None else width
            height = self.height if height is None else height
            self._check_size(width, height)
            self.width, self.height = int(width), int(height)
        if pattern is not None:
            self.pattern = WallPattern(pattern)

        ## fresh grids, the ring outside the stored area is implicit ##
        self.tiles = np.full((self.width, self.height), TileType.WALKABLE, dtype=np.int8)
        self.bomb_timers = np.zeros((self.width, self.height), dtype=np.int16)

        ## add breakable walls ##
        for x in range(self.width):
            for y in range(self.height):
                if self._can_spawn_breakable(x, y, self.pattern):
                    self.tiles[x, y] = TileType.BREAKABLE

        self.breakable_wall_count = self.count_breakable()
        self.initial_wall_count = self.breakable_wall_count
        self.spawn = self._spawn_position(self.pattern)

        if self.verbose:
            print(f"[INFO] Arena generated: {self.width}x{self.height}, pattern={self.pattern.name}, "
                  f"walls={self.breakable_wall_count}, spawn={self.spawn}")
        self.events.publish(ENVIRONMENT_GENERATED)
        return self.spawn

    def set_size(self, width, height):
        self._check_size(width, height)
        return self.generate(width=width, height=height)

    def set_pattern(self, pattern):
        return self.generate(pattern=pattern)

    def get_tile_type(self, position):
        # anything outside the board is the border wall
        if not self.in_bounds(position):
            return TileType.UNBREAKABLE
        return TileType(int(self.tiles[position[0], position[1]]))

    def get_bomb_timer(self, position):
        if not self.in_bounds(position):
            return 0
        return int(self.bomb_timers[position[0], position[1]])

    def set_tile_type(self, position, tile):
        """Write a single tile, keeping the breakable counter in sync. Out of bounds writes are ignored."""
        if not self.in_bounds(position):
            return
        x, y = position
        previous = self.tiles[x, y]
        if previous == TileType.BREAKABLE:
            self.breakable_wall_count -= 1
        if tile == TileType.BREAKABLE:
            self.breakable_wall_count += 1
        self.tiles[x, y] = tile

    def arm_bomb(self, position, timer):
        # the bomb cell blocks movement and further bombs until it goes off
        self.set_tile_type(position, TileType.UNBREAKABLE)
        if self.in_bounds(position):
            self.bomb_timers[position[0], position[1]] = timer

    def armed_bombs(self):
        """Yields ((x, y), timer) for every bomb still counting down."""
        for x, y in np.argwhere(self.bomb_timers > 0):
            yield (int(x), int(y)), int(self.bomb_timers[x, y])

    def clear_explosions(self):
        self.tiles[self.tiles == TileType.EXPLOSION] = TileType.WALKABLE

    def blast_footprint(self, position):
        """In-bounds cells covered by a bomb at the given position."""
        bx, by = position
        footprint = []
        for dx, dy in BLAST_OFFSETS:
            cell = (bx + dx, by + dy)
            if self.in_bounds(cell):
                footprint.append(cell)
        return footprint

    def _detonate(self, position):
        broken_walls = 0
        for cell in self.blast_footprint(position):
            x, y = cell
            # a wall already hit by an earlier blast this tick is EXPLOSION, not BREAKABLE
            if self.tiles[x, y] == TileType.BREAKABLE:
                broken_walls += 1
                self.breakable_wall_count -= 1
                if self.verbose:
                    print(f"[DEBUG] Wall destroyed at {cell} by bomb at {position}")
                self.events.publish(WALL_BROKEN, cell)
            self.tiles[x, y] = TileType.EXPLOSION
        return broken_walls

    def step_bombs(self):
        """Advance every bomb timer by one tick and resolve detonations.

        Explosions from the previous tick are cleared first. Bombs whose timer
        reaches zero detonate in scan order; a blast over another armed bomb
        does not set it off early.

        Returns:
            int: Number of walls destroyed during this tick.
        """
        self.clear_explosions()

        armed = self.bomb_timers > 0
        self.bomb_timers[armed] -= 1
        detonating = np.argwhere(armed & (self.bomb_timers == 0))

        broken_walls = 0
        for x, y in detonating:
            broken_walls += self._detonate((int(x), int(y)))

        self.events.publish(BOMBS_STEPPED)
        return broken_walls

    def count_breakable(self):
        return int(np.count_nonzero(self.tiles == TileType.BREAKABLE))

    def get_wall_stats(self):
        """Counts initial and current breakable walls, and how many have been broken."""
        current_walls = self.breakable_wall_count
        return {
            "initial_walls": self.initial_wall_count,
            "current_walls": current_walls,
            "walls_broken": self.initial_wall_count - current_walls
        }

    def render_text(self, agent_position=None):
        glyphs = {TileType.WALKABLE: '.', TileType.UNBREAKABLE: '#',
                  TileType.BREAKABLE: '+', TileType.EXPLOSION: '*'}
        rows = []
        # top row is the highest y
        for y in reversed(range(self.height)):
            row = []
            for x in range(self.width):
                if agent_position is not None and (x, y) == tuple(agent_position):
                    row.append('A')
                elif self.bomb_timers[x, y] > 0:
                    row.append(str(int(self.bomb_timers[x, y]) % 10))
                else:
                    row.append(glyphs[TileType(int(self.tiles[x, y]))])
            rows.append(' '.join(row))
        return '\n'.join(rows)
