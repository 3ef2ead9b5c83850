import gymnasium as gym
from gymnasium import spaces
import numpy as np
import pygame

from actor import Actor, AgentAction, NUM_ACTIONS, RewardConfig, DEFAULT_BOMB_TIMER
from arena import GridWorld, TileType, WallPattern, DEFAULT_SIZE
from events import EventChannel

# Constants for observation layers
OBS_LAYER_TILES = 0
OBS_LAYER_DANGER = 1
OBS_LAYER_PLAYER_POS = 2
NUM_OBS_LAYERS = 3

MAX_TILE_VALUE = float(max(TileType))


class ArenaRenderer:
    """Draws a GridWorld and the actor with pygame.

    Pure presentation: reads the arena, never changes it.
    """

    def __init__(self, world, tile_size=50, render_fps=10, render_mode="human"):
        self.world = world
        self.tile_size = tile_size
        self.render_fps = render_fps
        self.render_mode = render_mode
        self.screen = None
        self.clock = None
        self.font = None
        self.hud_text = ""
        self._load_colors()

    def _load_colors(self):
        self.colors = {
            "breakable": (139, 69, 19),     # SaddleBrown
            "floor": (230, 230, 230),       # Very Light Grey
            "unbreakable": (60, 60, 60),    # Dark Grey
            "player": (0, 255, 255),        # Bright Cyan
            "bomb": (255, 0, 0),            # Bright Red
            "explosion": (255, 100, 0),     # Fiery Orange
            "grid_line": (100, 100, 100),
            "danger": (255, 255, 0, 110),   # Yellow, translucent
            "hud": (20, 20, 20),
        }

    def _init_pygame(self):
        pygame.init()
        if self.render_mode == "human":
            pygame.display.set_caption("Bomb Arena Q-Learning")
            self.screen = pygame.display.set_mode(self._surface_size())
            self.clock = pygame.time.Clock()
        pygame.font.init()
        self.font = pygame.font.Font(None, int(self.tile_size * 0.6))

    def _surface_size(self):
        return (self.world.width * self.tile_size, self.world.height * self.tile_size)

    def _cell_rect(self, x, y):
        # y grows upwards in the arena, downwards on screen
        screen_row = self.world.height - 1 - y
        return pygame.Rect(x * self.tile_size, screen_row * self.tile_size, self.tile_size, self.tile_size)

    def draw(self, agent_position, danger=None):
        if self.font is None:
            self._init_pygame()
        if self.render_mode == "human" and self.screen.get_size() != self._surface_size():
            self.screen = pygame.display.set_mode(self._surface_size())

        surface = pygame.Surface(self._surface_size())
        surface.fill(self.colors["floor"])

        for x in range(self.world.width):
            for y in range(self.world.height):
                rect = self._cell_rect(x, y)
                tile = self.world.get_tile_type((x, y))
                if tile == TileType.BREAKABLE:
                    pygame.draw.rect(surface, self.colors["breakable"], rect)
                elif tile == TileType.UNBREAKABLE:
                    pygame.draw.rect(surface, self.colors["unbreakable"], rect)
                elif tile == TileType.EXPLOSION:
                    pygame.draw.rect(surface, self.colors["explosion"], rect)
                pygame.draw.rect(surface, self.colors["grid_line"], rect, 1)

                if danger is not None and danger[x, y] > 0:
                    overlay = pygame.Surface((self.tile_size, self.tile_size), pygame.SRCALPHA)
                    overlay.fill(self.colors["danger"])
                    surface.blit(overlay, rect.topleft)

        for (x, y), timer in self.world.armed_bombs():
            rect = self._cell_rect(x, y)
            pygame.draw.ellipse(surface, self.colors["bomb"],
                                rect.inflate(-self.tile_size * 0.2, -self.tile_size * 0.2))
            text_surf = self.font.render(str(timer), True, (255, 255, 255))
            surface.blit(text_surf, text_surf.get_rect(center=rect.center))

        if agent_position is not None:
            rect = self._cell_rect(*agent_position)
            pygame.draw.circle(surface, self.colors["player"], rect.center, self.tile_size // 3)

        if self.hud_text:
            hud_surf = self.font.render(self.hud_text, True, self.colors["hud"])
            surface.blit(hud_surf, (4, 4))

        if self.render_mode == "human":
            self.screen.blit(surface, (0, 0))
            pygame.event.pump()
            pygame.display.flip()
            self.clock.tick(self.render_fps)
            return None
        return np.transpose(np.array(pygame.surfarray.pixels3d(surface)), axes=(1, 0, 2))

    def close(self):
        if self.font is not None:
            if self.screen is not None:
                pygame.display.quit()
            pygame.quit()
            self.screen = None
            self.clock = None
            self.font = None


class ArenaEnv(gym.Env):
    """Gymnasium view of the arena for a single agent.

    Illegal actions are replaced by NONE and reported through
    ``info["action_taken_successfully"]``.
    """
    metadata = {'render_modes': ['human', 'rgb_array'], 'render_fps': 10}

    def __init__(self, width=DEFAULT_SIZE[0], height=DEFAULT_SIZE[1], wall_pattern=WallPattern.SPLIT,
                 bomb_timer=DEFAULT_BOMB_TIMER, rewards=None, max_episode_steps=100, render_mode=None,
                 events=None):
        super().__init__()
        self.events = events if events is not None else EventChannel()
        self.world = GridWorld(width, height, wall_pattern, events=self.events)
        self.rewards = rewards if rewards is not None else RewardConfig()
        self.actor = Actor(self.world, bomb_timer=bomb_timer, rewards=self.rewards)

        self.action_space = spaces.Discrete(NUM_ACTIONS)
        self.observation_space = spaces.Box(
            low=0.0, high=max(MAX_TILE_VALUE, float(bomb_timer)),
            shape=(self.world.width, self.world.height, NUM_OBS_LAYERS),
            dtype=np.float32
        )

        self.max_episode_steps = max_episode_steps
        self.current_step_in_episode = 0
        self.state = self.actor.snapshot()

        self.render_mode = render_mode
        self.renderer = None
        if self.render_mode is not None:
            self.renderer = ArenaRenderer(self.world, render_fps=self.metadata["render_fps"],
                                          render_mode=self.render_mode)

    def _get_obs(self):
        obs = np.zeros(self.observation_space.shape, dtype=np.float32)
        obs[:, :, OBS_LAYER_TILES] = self.state.tiles
        obs[:, :, OBS_LAYER_DANGER] = self.state.danger
        x, y = self.state.position
        if self.world.in_bounds((x, y)):
            obs[x, y, OBS_LAYER_PLAYER_POS] = 1.0
        return obs

    def legal_actions(self):
        return self.actor.legal_actions()

    def step(self, action):
        self.current_step_in_episode += 1
        walls_before_action = self.world.get_wall_stats()["current_walls"]

        action = AgentAction(int(action))
        action_taken_successfully = action in self.actor.legal_actions()
        if not action_taken_successfully:
            action = AgentAction.NONE

        self.state, reward = self.actor.execute(action)

        walls_after_action = self.world.get_wall_stats()["current_walls"]
        player_alive = reward != self.rewards.death

        terminated = not player_alive or walls_after_action == 0
        truncated = self.current_step_in_episode >= self.max_episode_steps

        info = {
            "player_pos": self.actor.position,
            "player_alive": player_alive,
            "action_taken": action,
            "action_taken_successfully": action_taken_successfully,
            "bombs_active": len(list(self.world.armed_bombs())),
            "current_walls": walls_after_action,
            "walls_broken": walls_before_action - walls_after_action,
            "state": self.state,
        }
        return self._get_obs(), float(reward), terminated, truncated, info

    def reset(self, seed=None, options=None):
        super().reset(seed=seed)

        options = options or {}
        spawn = self.world.generate(width=options.get("width"), height=options.get("height"),
                                    pattern=options.get("wall_pattern"))
        if self.observation_space.shape[:2] != self.world.size:
            self.observation_space = spaces.Box(
                low=0.0, high=self.observation_space.high.max(),
                shape=(self.world.width, self.world.height, NUM_OBS_LAYERS),
                dtype=np.float32
            )
        self.actor.reset(spawn)
        self.current_step_in_episode = 0
        self.state = self.actor.snapshot()

        info = {"current_walls": self.world.breakable_wall_count, "state": self.state}
        return self._get_obs(), info

    def render(self):
        if self.renderer is None:
            return None
        return self.renderer.draw(self.actor.position, self.state.danger)

    def close(self):
        if self.renderer is not None:
            self.renderer.close()


# Example usage (optional, for testing)
if __name__ == '__main__':
    env = ArenaEnv(render_mode='human')
    obs, info = env.reset()
    total_reward_acc = 0
    for _ in range(500):
        action = env.np_random.choice(env.legal_actions())
        obs, reward, terminated, truncated, info = env.step(action)
        total_reward_acc += reward
        env.render()
        if terminated or truncated:
            print(f"Episode finished. Total reward: {total_reward_acc}")
            print(f"Termination reason: Player alive? {info['player_alive']}, Walls left: {info['current_walls']}")
            obs, info = env.reset()
            total_reward_acc = 0
        if any(event.type == pygame.QUIT for event in pygame.event.get()):
            break
    env.close()
