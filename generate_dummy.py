# generate_dummy.py
import sys

BUFFER_SIZE = 10000


def write_lines(output_file, num_lines):
    """Write lines "Here is line i." for i in 1..num_lines."""
    with open(output_file, 'w', encoding='ascii', newline='\n') as f:
        for start in range(1, num_lines + 1, BUFFER_SIZE):
            end = min(start + BUFFER_SIZE, num_lines + 1)
            f.writelines(f"Here is line {i}.\n" for i in range(start, end))


def main():
    if len(sys.argv) < 2:
        print("Usage: python3 generate_dummy.py <num_lines> [output_file]")
        sys.exit(1)

    num_lines = int(sys.argv[1])
    output_file = sys.argv[2] if len(sys.argv) > 2 else "dummy.txt"
    write_lines(output_file, num_lines)
    print(f"Generated {num_lines} lines in {output_file}")


if __name__ == "__main__":
    main()
