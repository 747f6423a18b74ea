# orbslam_core

Building blocks for a feature-based visual SLAM pipeline. The package is
written in pure Python on top of NumPy.

It gives you ORB features, the matchers that link them to 3D landmarks, the
landmarks themselves and a thread-safe map that holds them. It also produces
the geometry you need to draw that map. Frames and keyframes are duck-typed:
each matcher's docstring lists the attributes and methods it reads.

## Installation

```
pip install .
```

Running the tests needs the `test` extra:

```
pip install ".[test]"
pytest
```

## Modules

### Feature extraction

- `orbslam_core.orb_extractor.ORBExtractor(n_features=1000, scale_factor=1.2, n_levels=8, ini_th_fast=20, min_th_fast=7)`
  builds the extractor.
  - `compute_pyramid(image)` builds a scale pyramid.
  - `compute_keypoints_oct_tree()` finds FAST corners per level in 30-pixel
    cells. It spreads them with a quadtree and assigns each an orientation.
  - `extract(image)` takes an 8-bit single-channel image. It returns the
    keypoints, in original image coordinates, and an `(N, 32)` `uint8` array of
    descriptors.
- `orbslam_core.imaging` holds the image operations the extractor uses:
  - `copy_make_border` pads with mirrored pixels and does not repeat the edge.
  - `resize_linear` resizes bilinearly with pixel-centre alignment.
  - `gaussian_blur` is a separable Gaussian blur.
  - `fast` finds FAST-9 corners, with optional non-maximum suppression.
- `orbslam_core.oct_tree` provides `ExtractorNode` and
  `distribute_oct_tree(keys, min_x, max_x, min_y, max_y, n)`. The function
  keeps the strongest keypoint of each cell.
- `orbslam_core.orb_pattern` computes orientation and descriptors:
  - `circular_patch_umax()` gives the half-widths of the orientation patch.
  - `ic_angle` is the intensity-centroid orientation in degrees.
  - `compute_orb_descriptor` and `compute_descriptors` compute rotated BRIEF.

### Descriptors and match filtering

`orbslam_core.descriptors` defines the `KeyPoint` dataclass and these
functions:

- `descriptor_distance(a, b)` is the Hamming distance of two 32-byte
  descriptors.
- `rotation_bin`, `compute_three_maxima` and `filter_by_rotation` implement the
  rotation-consistency histogram of 30 bins.
- `radius_by_viewing_cos` gives the search window radius.
- `check_dist_epipolar_line` tests a keypoint against the epipolar line.

### Matchers

Each matcher takes `nn_ratio=0.6` and `check_orientation=True`.

- `orbslam_core.projection.ProjectionMatcher` matches by projection:
  - `search_local_points` matches local map points into a frame.
  - `search_last_frame` tracks from the previous frame.
  - `search_keyframe` matches from a keyframe.
  - `search_sim3_projection` matches under a similarity pose.
- `orbslam_core.bow_matcher.BowMatcher` compares features that share a
  vocabulary node:
  - `search_by_bow_frame(keyframe, frame)` matches a keyframe against a frame.
  - `search_by_bow(keyframe1, keyframe2)` matches two keyframes.
- `orbslam_core.triangulation.PairMatcher` matches pairs of views:
  - `search_for_initialization` returns the match indices, the updated previous
    positions and the count.
  - `search_for_triangulation` returns `(index1, index2)` pairs that satisfy
    the epipolar constraint.
- `orbslam_core.fusion.FusionMatcher` merges and matches map points:
  - `fuse` merges duplicated map points into a keyframe.
  - `fuse_sim3` does the same under a similarity pose and reports the points
    that would replace each input.
  - `search_by_sim3` finds mutual matches between two keyframes.

Methods that produce a new match list return it together with the number of
matches. The frame-based projection searches write into `frame.map_points`
and return the count.

### Map points and the map

- `orbslam_core.mappoint.MapPoint` is a landmark:
  - It keeps its observations: `add_observation`, `erase_observation`,
    `observations`, `num_observations`.
  - It keeps a representative descriptor: `compute_distinctive_descriptors`,
    `descriptor`.
  - It keeps a mean viewing direction and the distances over which its scale is
    valid: `update_normal_and_depth`, `min_distance_invariance`,
    `max_distance_invariance`, `predict_scale`.
  - It supports `set_bad_flag`, and `replace` hands its observations to
    another point.
  - `MapPoint.from_frame` creates a point from a single frame observation.
- `orbslam_core.map.Map` holds keyframes and map points behind a lock:
  - `add_keyframe`, `add_map_point`, `erase_map_point` and `erase_keyframe`
    change what it holds.
  - `all_keyframes`, `all_map_points`, `keyframes_in_map`,
    `map_points_in_map` and `max_keyframe_id` report on it.
  - It keeps reference points and a big-change counter.
  - `clear` empties it.

### Visualisation geometry

`orbslam_core.drawing` produces geometry only:

- `DrawerSettings.from_mapping` reads the `Viewer.*` sizes from a settings
  mapping.
- `MapDrawer` returns:
  - map point vertices, split into ordinary and reference points;
  - keyframe frustum segments;
  - covisibility, spanning-tree and loop edges;
  - the current camera frustum;
  - a column-major OpenGL camera matrix.
- `opengl_camera_matrix` and `camera_frustum_lines` are also available on
  their own.

## Examples

Extracting features:

```python
import numpy as np
from orbslam_core.orb_extractor import ORBExtractor
from orbslam_core.descriptors import descriptor_distance

image = (np.random.default_rng(0).random((240, 320)) * 255).astype(np.uint8)

extractor = ORBExtractor()
keypoints, descriptors = extractor.extract(image)

if len(keypoints) >= 2:
    print(descriptor_distance(descriptors[0], descriptors[1]))
```

Map bookkeeping:

```python
from orbslam_core.map import Map
from orbslam_core.mappoint import MapPoint


class KeyFrameStub:
    def __init__(self, id, frame_id):
        self.id = id
        self.frame_id = frame_id


world = Map()
keyframe = KeyFrameStub(id=3, frame_id=12)
world.add_keyframe(keyframe)

point = MapPoint([0.0, 0.0, 1.0], keyframe, world)
world.add_map_point(point)

print(world.keyframes_in_map(), world.map_points_in_map(), world.max_keyframe_id())
```

Camera geometry:

```python
import numpy as np
from orbslam_core.drawing import camera_frustum_lines, opengl_camera_matrix

print(opengl_camera_matrix(np.eye(4)).reshape(4, 4))
print(camera_frustum_lines(0.1).shape)  # (8, 2, 3)
```

## What the package does not do

The package has no tracking loop, local mapping, loop closing, bundle
adjustment or pose optimisation. It does not build a bag-of-words vocabulary:
matchers expect frames and keyframes that already carry their feature vectors,
poses and feature lookup. It does not read cameras, datasets or settings
files. It does not open a window or render anything: `MapDrawer` only returns
arrays. It has no command-line program.