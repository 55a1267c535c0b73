import os

import numpy as np
import pytest
from PIL import Image

from smart_compress import cli


@pytest.fixture
def image_tree(tmp_path, solid_image, transparent_image):
    input_dir = tmp_path / 'in'
    (input_dir / 'nested').mkdir(parents=True)
    Image.fromarray(solid_image).save(input_dir / 'solid.png')
    Image.fromarray(transparent_image).save(input_dir / 'nested' / 'logo.png')
    (input_dir / 'notes.txt').write_text('not an image')
    (input_dir / 'broken.png').write_bytes(b'not really a png')
    return input_dir


def test_collect_jobs_filters_extensions(image_tree, tmp_path):
    jobs = cli.collect_jobs(str(image_tree), str(tmp_path / 'out'), ['PNG'])
    assert sorted(job.relative_path.replace('\\', '/') for job in jobs) == [
        'broken.png', 'nested/logo.png', 'solid.png',
    ]


def test_main_mirrors_tree(image_tree, tmp_path, capsys):
    output_dir = tmp_path / 'out'
    cli.main([str(image_tree), str(output_dir), '--workers', '2'])

    assert (output_dir / 'solid.png').exists()
    assert (output_dir / 'nested' / 'logo.png').exists()
    assert not (output_dir / 'notes.txt').exists()
    assert not (output_dir / 'broken.png').exists()

    with Image.open(output_dir / 'solid.png') as img:
        assert np.array_equal(np.array(img.convert('RGB')), np.array(Image.open(image_tree / 'solid.png')))

    out = capsys.readouterr().out
    assert 'SMART COMPRESSION SUMMARY' in out
    assert 'Files processed: 2' in out
    assert 'Errors: 1' in out
    assert 'Failed to compress: broken.png' in out


def test_process_directory_renames_extension(tmp_path, noise_image):
    input_dir = tmp_path / 'in'
    input_dir.mkdir()
    Image.fromarray(noise_image).save(input_dir / 'photo.png')
    constraints = cli.Constraints(preferred_formats=('jpeg',))

    reports = cli.process_directory_smart(str(input_dir), str(tmp_path / 'out'), constraints)

    assert len(reports) == 1
    assert reports[0].outcome.format.value == 'jpeg'
    assert (tmp_path / 'out' / 'photo.jpg').exists()
    assert reports[0].reduction > 0


def test_analyze_only_writes_nothing(image_tree, tmp_path, capsys):
    output_dir = tmp_path / 'out'
    cli.main([str(image_tree), str(output_dir), '--analyze-only'])

    assert not output_dir.exists()
    out = capsys.readouterr().out
    assert 'Optimal Compression' in out
    assert 'Format: PNG' in out


@pytest.mark.parametrize('extra', [
    ['--target-size', '10gb'],
    ['--target-size', '100kb', '--min-quality', '99'],
    ['--target-size', '-5'],
    ['--min-quality', '0'],
    ['--max-width', '-10'],
    ['--formats', 'gif'],
    ['--workers', '0'],
])
def test_invalid_arguments_exit_with_1(image_tree, tmp_path, extra):
    with pytest.raises(SystemExit) as excinfo:
        cli.main([str(image_tree), str(tmp_path / 'out')] + extra)
    assert excinfo.value.code == 1


def test_missing_input_dir(tmp_path, capsys):
    with pytest.raises(SystemExit) as excinfo:
        cli.main([str(tmp_path / 'missing'), str(tmp_path / 'out')])
    assert excinfo.value.code == 1
    assert 'does not exist' in capsys.readouterr().out


def test_empty_directory(tmp_path, capsys):
    (tmp_path / 'in').mkdir()
    cli.main([str(tmp_path / 'in'), str(tmp_path / 'out')])
    assert 'No images were processed.' in capsys.readouterr().out


def test_inputs_sharing_a_name_get_separate_outputs(tmp_path):
    input_dir = tmp_path / 'in'
    output_dir = tmp_path / 'out'
    input_dir.mkdir()
    red = np.zeros((8, 8, 3), dtype=np.uint8)
    red[..., 0] = 255
    blue = np.zeros((8, 8, 3), dtype=np.uint8)
    blue[..., 2] = 255
    Image.fromarray(red).save(input_dir / 'a.png')
    Image.fromarray(blue).save(input_dir / 'a.bmp')
    Image.fromarray(red).save(input_dir / 'b.png')

    reports = cli.process_directory_smart(str(input_dir), str(output_dir), workers=2)

    assert len(reports) == 3
    assert sorted(p.name for p in output_dir.iterdir()) == ['a.bmp.png', 'a.png.png', 'b.png']
    assert len({report.job.output_path for report in reports}) == 3
    with Image.open(output_dir / 'a.png.png') as img:
        assert img.convert('RGB').getpixel((0, 0)) == (255, 0, 0)
    with Image.open(output_dir / 'a.bmp.png') as img:
        assert img.convert('RGB').getpixel((0, 0)) == (0, 0, 255)


def test_collect_jobs_output_names_are_unique(tmp_path):
    input_dir = tmp_path / 'in'
    input_dir.mkdir()
    for name in ['a.png', 'A.jpg', 'a.png.bmp', 'photo.webp']:
        (input_dir / name).write_bytes(b'')
    output_dir = tmp_path / 'out'

    jobs = cli.collect_jobs(str(input_dir), str(output_dir), ['.png', '.jpg', '.bmp', '.webp'])
    bases = {job.relative_path: os.path.basename(job.output_base) for job in jobs}

    assert bases == {
        'A.jpg': 'A.jpg',
        'a.png': 'a.png',
        'a.png.bmp': 'a.png.bmp',
        'photo.webp': 'photo',
    }
